#!/usr/bin/env python3
import argparse
import hashlib
import json
import shutil
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, NoReturn, Optional, Sequence, Tuple

from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from .console import BuildLog
from .errors import (
    BinaryInstallError,
    BuildError,
    ChangeDirectoryError,
    CommandError,
    ConfigureError,
    DirectoryCreationError,
    DownloadError,
    MakeError,
    MakeInstallError,
    SourceCopyError,
    UnpackError,
    UsageError,
)
from .patchers.gyp_patcher import ENTRY_MODULE, RELATIVE_TARGET, patch_manifest


# =========================
# GLOBALS
# =========================
DEFAULT_VERSION = "0.10.36"
DEFAULT_MIRROR = "http://nodejs.org/dist"
BINARY_NAME = "node"
# written next to the installed tree once make install succeeds
BUILD_STAMP = ".node-constructor-build.json"
NO_SOURCES_MSG = "You need to specify at least one js file."

# exit status used when a command cannot be started at all
SPAWN_FAILED = 127


class BuildState(Enum):
    INIT = "init"
    DIR_READY = "dir-ready"
    SOURCE_FETCHED = "source-fetched"
    SOURCE_UNPACKED = "source-unpacked"
    SOURCE_INJECTED = "source-injected"
    COMPILED = "compiled"
    INSTALLED = "installed"
    DONE = "done"
    FAILED = "failed"


# =========================
# CONFIG
# =========================
def install_bindir(installdir: Path, prefix: str) -> Path:
    # make install writes to DESTDIR + prefix, so an absolute prefix still lands under installdir
    return installdir / prefix.lstrip("/") / "bin"


@dataclass(frozen=True)
class RunConfig:
    output: Path
    tmpdir: Path
    installdir: Path
    prefix: str = "install"
    version: str = DEFAULT_VERSION
    log_level: str = "INFO"
    sources: Tuple[Path, ...] = ()
    mirror: str = DEFAULT_MIRROR

    @property
    def dist_name(self) -> str:
        return f"node-v{self.version}"

    @property
    def tarball(self) -> Path:
        return self.tmpdir / f"{self.dist_name}.tar.gz"

    @property
    def distfile(self) -> str:
        return f"{self.mirror.rstrip('/')}/v{self.version}/{self.dist_name}.tar.gz"

    @property
    def srcdir(self) -> Path:
        return self.tmpdir / self.dist_name

    @property
    def bindir(self) -> Path:
        return install_bindir(self.installdir, self.prefix)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "RunConfig":
        return cls(
            output=Path(args.o).expanduser().resolve(),
            tmpdir=Path(args.tmpdir).expanduser().resolve(),
            installdir=Path(args.installdir).expanduser().resolve(),
            prefix=args.prefix,
            version=args.ver,
            log_level=args.log.upper(),
            sources=tuple(Path(f).expanduser() for f in args.files),
            mirror=args.mirror,
        )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="node-constructor",
        usage="%(prog)s [--tmpdir=DIR] [--log=LEVEL] -o FILE file [file ...]",
        description="Build a node binary that runs the given script as its main module.",
    )
    ap.add_argument("-o", required=True, metavar="FILE", help="output binary path (e.g. a.out)")
    ap.add_argument("--tmpdir", default="./tmp", help="scratch directory for the tarball and sources")
    ap.add_argument("--installdir", default="./tmp", help="DESTDIR used by make install")
    ap.add_argument("--prefix", default="install", help="prefix passed to configure")
    ap.add_argument("--log", default="INFO", help="log level: TRACE, DEBUG, INFO, WARN, ERROR, FATAL")
    ap.add_argument("--ver", default=DEFAULT_VERSION, help="node release to build")
    ap.add_argument("--mirror", default=DEFAULT_MIRROR, help="base URL of the node dist mirror")
    ap.add_argument("files", nargs="*", help="js file(s); only the first one is embedded")
    return ap.parse_args(argv)


def display_intro(cfg: RunConfig, log: BuildLog) -> None:
    if not log.enabled("INFO"):
        return
    log.console.rule("[bold green]Node Constructor Configuration Overview[/]")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="yellow")
    for k, v in [
        ("version", cfg.version),
        ("distfile", cfg.distfile),
        ("tmpdir", cfg.tmpdir),
        ("installdir", cfg.installdir),
        ("prefix", cfg.prefix),
        ("output", cfg.output),
        ("main script", cfg.sources[0] if cfg.sources else "-"),
    ]:
        table.add_row(k, str(v))
    log.console.print(table)


# =========================
# UTILITIES
# =========================
def die(log: BuildLog, msg: str, status: int = 1) -> NoReturn:
    log.fatal(msg)
    sys.exit(status)


def run(
    cmd: List[str],
    cwd: Optional[Path] = None,
    log: Optional[BuildLog] = None,
    placeholder: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` to completion and return the finished process.

    stdout and stderr are captured and only ever shown at DEBUG level. A
    non-zero exit raises CommandError with the tool's code; a tool that
    cannot be started raises CommandError with code 127. There is no timeout.
    """
    if log is None:
        log = BuildLog()
    log.run(" ".join(cmd) + (f"  (in {cwd})" if cwd else ""))

    def spawn() -> subprocess.CompletedProcess:
        return subprocess.run(
            cmd,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
        )

    try:
        if placeholder is not None and log.enabled("INFO"):
            with Progress(
                SpinnerColumn(style="cyan"),
                TextColumn(placeholder),
                TimeElapsedColumn(),
                console=log.console,
                transient=True,
            ) as progress:
                progress.add_task("", start=True)
                proc = spawn()
        else:
            proc = spawn()
    except OSError as e:
        log.debug(f"{cmd[0]}: {e}")
        raise CommandError(cmd[0], SPAWN_FAILED) from e

    if proc.stdout:
        log.debug(proc.stdout)
    if proc.stderr:
        log.debug(proc.stderr)
    if proc.returncode != 0:
        raise CommandError(cmd[0], proc.returncode)
    return proc


# =========================
# WORKSPACE, FETCH & UNPACK
# =========================
def prep_dir(name: Path, log: BuildLog) -> None:
    log.trace(f"Preparing directory {name}")
    if name.exists():
        return
    try:
        name.mkdir(mode=0o700)
    except OSError as e:
        raise DirectoryCreationError(f"Could not prepare {name}: {e}") from e


def prep_distfile(distfile: str, tofile: Path, log: BuildLog) -> None:
    log.trace(f"Preparing distfile {distfile} to {tofile}")
    if tofile.exists():
        # no checksum: whatever sits at tofile is trusted
        log.info(f"{tofile} exists, skipping download")
        return
    log.debug(f"Downloading {distfile} to {tofile}")
    try:
        run(["wget", "-O", str(tofile), distfile], log=log, placeholder=f"Downloading {distfile}")
    except CommandError as e:
        raise DownloadError(f"Could not download {distfile} to {tofile}: {e}", e.returncode) from e


def prep_unpack(tarball: Path, dest: Path, log: BuildLog) -> None:
    prep_dir(dest, log)
    if (dest / "configure").exists():
        log.info(f"Sources already unpacked in {dest}, skipping")
        return
    log.debug(f"Unpacking {tarball} to {dest}")
    try:
        run(["tar", "--strip-components=1", "-C", str(dest), "-xf", str(tarball)], log=log)
    except CommandError as e:
        raise UnpackError(f"Unpack failed for {tarball}: {e}", e.returncode) from e


# =========================
# SOURCE INJECTION
# =========================
def prep_source_files(srcdir: Path, files: Sequence[Path], log: BuildLog) -> None:
    log.trace(f"Preparing source files into {srcdir}...")
    if not files:
        raise UsageError(NO_SOURCES_MSG)
    main_file = files[0]
    if len(files) > 1:
        log.warn(
            f"Only the first file is embedded ({main_file}); ignoring: "
            + ", ".join(str(f) for f in files[1:])
        )

    patch_manifest(srcdir, log)

    target = srcdir / ENTRY_MODULE
    try:
        shutil.copy2(main_file, target)
    except OSError as e:
        raise SourceCopyError(f"Could not prepare {ENTRY_MODULE}: {e}") from e
    log.debug(f"Copied {main_file} to {target}")


# =========================
# BUILD
# =========================
def file_sha256(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    return hashlib.sha256(path.read_bytes()).hexdigest()


def build_stamp(srcdir: Path, version: str, prefix: str) -> Dict[str, Any]:
    """Inputs that decide what ``make install`` produces for this run."""
    return {
        "version": version,
        "prefix": prefix,
        "entry_sha256": file_sha256(srcdir / ENTRY_MODULE),
        "manifest_sha256": file_sha256(srcdir / RELATIVE_TARGET),
    }


def is_build_current(binary: Path, stamp_file: Path, stamp: Dict[str, Any]) -> bool:
    if not binary.exists() or stamp["entry_sha256"] is None or not stamp_file.is_file():
        return False
    try:
        recorded = json.loads(stamp_file.read_text())
    except ValueError:
        return False
    return recorded == stamp


def compile_node(
    srcdir: Path,
    installdir: Path,
    prefix: str,
    log: BuildLog,
    version: str = DEFAULT_VERSION,
) -> None:
    destdir = installdir.resolve()
    prefix_dir = destdir / prefix.lstrip("/")
    binary = install_bindir(destdir, prefix) / BINARY_NAME
    stamp_file = prefix_dir / BUILD_STAMP
    stamp = build_stamp(srcdir, version, prefix)
    if is_build_current(binary, stamp_file, stamp):
        log.info(f"{binary} already built from these sources, skipping compile")
        return

    log.step("Compiling node binary ...")
    try:
        prefix_dir.mkdir(parents=True, exist_ok=True)
        if stamp_file.exists():
            stamp_file.unlink()
    except OSError as e:
        raise DirectoryCreationError(f"Could not prepare destdir {prefix_dir}: {e}") from e

    if not srcdir.is_dir():
        raise ChangeDirectoryError(f"Could not change directory to {srcdir}: not a directory")
    log.debug(f"Building in directory: {srcdir}")

    steps = [
        (["./configure", f"--prefix={prefix}"], ConfigureError, "Could not configure", "Configuring..."),
        (["make"], MakeError, "Could not make", "Compiling..."),
        (["make", f"DESTDIR={destdir}", "install"], MakeInstallError, "Could not make install", "Installing..."),
    ]
    for cmd, error_cls, what, placeholder in steps:
        try:
            run(cmd, cwd=srcdir, log=log, placeholder=placeholder)
        except CommandError as e:
            raise error_cls(f"{what}: {e}", e.returncode) from e

    try:
        stamp_file.write_text(json.dumps(stamp, indent=2, sort_keys=True))
    except OSError as e:
        raise MakeInstallError(f"Could not record build stamp {stamp_file}: {e}") from e
    log.success(f"node built into {binary.parent}")


def prep_output_file(bindir: Path, outfile: Path, log: BuildLog) -> None:
    log.step(f"Installing to {outfile} ...")
    try:
        shutil.copy(bindir / BINARY_NAME, outfile)
    except OSError as e:
        raise BinaryInstallError(f"Could not install {outfile}: {e}") from e


# =========================
# PIPELINE
# =========================
@dataclass
class BuildResult:
    state: BuildState = BuildState.INIT
    error: Optional[BuildError] = None

    @property
    def ok(self) -> bool:
        return self.state is BuildState.DONE


def pipeline_steps(cfg: RunConfig, log: BuildLog) -> List[Tuple[BuildState, Callable[[], None]]]:
    """Stages in run order, each paired with the state reached once it succeeds."""
    return [
        (BuildState.DIR_READY, lambda: prep_dir(cfg.tmpdir, log)),
        (BuildState.SOURCE_FETCHED, lambda: prep_distfile(cfg.distfile, cfg.tarball, log)),
        (BuildState.SOURCE_UNPACKED, lambda: prep_unpack(cfg.tarball, cfg.srcdir, log)),
        (BuildState.SOURCE_INJECTED, lambda: prep_source_files(cfg.srcdir, cfg.sources, log)),
        (BuildState.COMPILED, lambda: compile_node(cfg.srcdir, cfg.installdir, cfg.prefix, log, cfg.version)),
        (BuildState.INSTALLED, lambda: prep_output_file(cfg.bindir, cfg.output, log)),
    ]


def run_pipeline(cfg: RunConfig, log: BuildLog) -> BuildResult:
    result = BuildResult()
    try:
        if not cfg.sources:
            raise UsageError(NO_SOURCES_MSG)
        for state, stage in pipeline_steps(cfg, log):
            stage()
            result.state = state
            log.trace(f"Reached state {state.value}")
    except BuildError as e:
        log.error(f"{e.stage.capitalize()} failed: {e}")
        result.state = BuildState.FAILED
        result.error = e
        return result

    result.state = BuildState.DONE
    log.success("DONE.")
    return result


# =========================
# MAIN
# =========================
def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    try:
        log = BuildLog(args.log)
    except UsageError as e:
        die(BuildLog(), str(e), e.status)

    if not args.files:
        log.error(NO_SOURCES_MSG)
        sys.exit(UsageError.status)

    cfg = RunConfig.from_args(args)
    display_intro(cfg, log)

    result = run_pipeline(cfg, log)
    if not result.ok:
        sys.exit(result.error.status)


if __name__ == "__main__":
    main()
