import sys

import pytest

from node_constructor.errors import ManifestReadError, ManifestWriteError
from node_constructor.patchers import gyp_patcher
from node_constructor.patchers.gyp_patcher import (
    ENTRY_MODULE,
    is_already_patched,
    patch_manifest,
    register_entry,
)

from conftest import NODE_GYP, log_text


def test_register_entry_appends_after_anchor():
    text, found = register_entry(NODE_GYP)
    assert found
    assert "'lib/zlib.js', 'lib/_third_party_main.js',\n" in text
    assert text.count(ENTRY_MODULE) == 1


def test_patch_manifest_writes_file(tmp_path, log):
    (tmp_path / "node.gyp").write_text(NODE_GYP)
    assert patch_manifest(tmp_path, log) is True
    assert is_already_patched((tmp_path / "node.gyp").read_text())


def test_patch_manifest_twice_registers_once(tmp_path, log):
    (tmp_path / "node.gyp").write_text(NODE_GYP)
    patch_manifest(tmp_path, log)
    patch_manifest(tmp_path, log)
    assert (tmp_path / "node.gyp").read_text().count(ENTRY_MODULE) == 1
    assert "already registered" in log_text(log)


def test_missing_anchor_leaves_manifest_untouched(tmp_path, log):
    original = "{\n  'variables': {\n    'library_files': [\n      'lib/vm.js',\n    ],\n  },\n}\n"
    (tmp_path / "node.gyp").write_text(original)
    assert patch_manifest(tmp_path, log) is False
    assert (tmp_path / "node.gyp").read_text() == original
    assert "NOT registered" in log_text(log)


def test_missing_manifest_raises(tmp_path, log):
    with pytest.raises(ManifestReadError):
        patch_manifest(tmp_path, log)


def test_unwritable_manifest_raises(tmp_path, log, unwritable_manifest):
    (tmp_path / "node.gyp").write_text(NODE_GYP)
    with pytest.raises(ManifestWriteError) as excinfo:
        patch_manifest(tmp_path, log)
    assert excinfo.value.status == 14
    assert (tmp_path / "node.gyp").read_text() == NODE_GYP


def test_standalone_main_requires_one_argument(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["gyp_patcher"])
    with pytest.raises(SystemExit) as excinfo:
        gyp_patcher.main()
    assert excinfo.value.code == 2


def test_standalone_main_missing_tree(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["gyp_patcher", str(tmp_path / "missing")])
    with pytest.raises(SystemExit) as excinfo:
        gyp_patcher.main()
    assert excinfo.value.code == ManifestReadError.status


def test_standalone_main_patches_tree(tmp_path, monkeypatch, capsys):
    (tmp_path / "node.gyp").write_text(NODE_GYP)
    monkeypatch.setattr(sys, "argv", ["gyp_patcher", str(tmp_path)])
    gyp_patcher.main()
    assert is_already_patched((tmp_path / "node.gyp").read_text())
    assert "patch complete" in capsys.readouterr().out
