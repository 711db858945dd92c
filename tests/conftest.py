import io
import subprocess
from pathlib import Path

import pytest
from rich.console import Console

from node_constructor import node_builder
from node_constructor.console import BuildLog
from node_constructor.errors import CommandError
from node_constructor.node_builder import RunConfig

NODE_GYP = """{
  'variables': {
    'library_files': [
      'src/node.js',
      'lib/_debugger.js',
      'lib/vm.js',
      'lib/zlib.js',
    ],
  },
}
"""

FAKE_BINARY = b"\x7fELF fake node binary"


def make_log(level: str = "TRACE") -> BuildLog:
    console = Console(file=io.StringIO(), width=1000, color_system=None)
    return BuildLog(level, console=console)


def log_text(log: BuildLog) -> str:
    return log.console.file.getvalue()


@pytest.fixture
def log():
    return make_log()


class FakeTools:
    """Stands in for node_builder.run, acting out wget, tar, configure and make."""

    def __init__(self):
        self.calls = []
        self.fail = {}
        self.prefix = "install"

    @property
    def names(self):
        return [name for name, _ in self.calls]

    def __call__(self, cmd, cwd=None, log=None, placeholder=None):
        name = "make install" if cmd[0] == "make" and "install" in cmd else cmd[0]
        self.calls.append((name, cwd))
        if name in self.fail:
            raise CommandError(cmd[0], self.fail[name])

        if name == "wget":
            Path(cmd[2]).write_bytes(b"tarball")
        elif name == "tar":
            dest = Path(cmd[3])
            (dest / "configure").write_text("#!/bin/sh\n")
            (dest / "lib").mkdir(exist_ok=True)
            (dest / "node.gyp").write_text(NODE_GYP)
        elif name == "./configure":
            self.prefix = cmd[1].split("=", 1)[1]
        elif name == "make install":
            destdir = Path(cmd[1].split("=", 1)[1])
            bindir = destdir / self.prefix.lstrip("/") / "bin"
            bindir.mkdir(parents=True, exist_ok=True)
            (bindir / "node").write_bytes(FAKE_BINARY)
        return subprocess.CompletedProcess(cmd, 0, "", "")


@pytest.fixture
def fake_tools(monkeypatch):
    tools = FakeTools()
    monkeypatch.setattr(node_builder, "run", tools)
    return tools


@pytest.fixture
def main_js(tmp_path):
    script = tmp_path / "main.js"
    script.write_text("console.log('hello from main');\n")
    return script


@pytest.fixture
def config(tmp_path, main_js):
    return RunConfig(
        output=tmp_path / "out",
        tmpdir=tmp_path / "t",
        installdir=tmp_path / "t",
        sources=(main_js,),
    )


@pytest.fixture
def unwritable_manifest(monkeypatch):
    """Refuse to write node.gyp once the entry module has been spliced in."""
    from node_constructor.patchers.gyp_patcher import ENTRY_MODULE

    real_write_text = Path.write_text

    def write_text(self, data, *args, **kwargs):
        if self.name == "node.gyp" and ENTRY_MODULE in data:
            raise PermissionError(13, "Permission denied", str(self))
        return real_write_text(self, data, *args, **kwargs)

    monkeypatch.setattr(Path, "write_text", write_text)
