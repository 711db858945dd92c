import re
import sys
from pathlib import Path
from typing import Tuple

from rich.panel import Panel

from ..console import BuildLog
from ..errors import BuildError, ManifestReadError, ManifestWriteError

RELATIVE_TARGET = "node.gyp"

ENTRY_MODULE = "lib/_third_party_main.js"

# library_files in node.gyp lists one module per line; the entry is spliced
# onto the zlib line so it lands inside the same list
ANCHOR_RE = re.compile(r"'lib/zlib\.js',\n")
ANCHOR_REPLACEMENT = f"'lib/zlib.js', '{ENTRY_MODULE}',\n"


def is_already_patched(text: str) -> bool:
    return f"'{ENTRY_MODULE}'" in text


def register_entry(text: str) -> Tuple[str, bool]:
    """Return the manifest text with the entry module registered, and whether the anchor matched."""
    new_text, count = ANCHOR_RE.subn(ANCHOR_REPLACEMENT, text, count=1)
    return new_text, count == 1


def patch_manifest(srcdir: Path, log: BuildLog) -> bool:
    """Register the entry module in ``<srcdir>/node.gyp``.

    Returns False when the anchor line is missing; the manifest is then left
    untouched and the build goes on without the entry module.
    """
    target_file = srcdir / RELATIVE_TARGET
    try:
        text = target_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestReadError(f"Could not read {RELATIVE_TARGET}: {e}") from e

    if is_already_patched(text):
        log.info(f"{ENTRY_MODULE} already registered in {RELATIVE_TARGET}, skipping")
        return True

    text, found = register_entry(text)
    if not found:
        log.warn(
            f"Anchor 'lib/zlib.js' not found in {target_file}; "
            f"{ENTRY_MODULE} is NOT registered and the built runtime will ignore it"
        )
        return False

    try:
        target_file.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ManifestWriteError(f"Could not write {RELATIVE_TARGET}: {e}") from e
    log.success(f"Registered {ENTRY_MODULE} in {RELATIVE_TARGET}")
    return True


def main() -> None:
    log = BuildLog()
    if len(sys.argv) != 2:
        log.fatal("Usage: python -m node_constructor.patchers.gyp_patcher <node_source_dir>")
        sys.exit(2)

    root_dir = Path(sys.argv[1]).expanduser().resolve()
    try:
        patched = patch_manifest(root_dir, log)
    except BuildError as e:
        log.fatal(str(e))
        sys.exit(e.status)

    if patched:
        log.console.print(Panel(f"[✓] {RELATIVE_TARGET} patch complete", style="bold green"))


if __name__ == "__main__":
    main()
