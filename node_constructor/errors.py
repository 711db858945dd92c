from typing import Optional


class BuildError(Exception):
    """Base class for every failure that aborts a build run."""

    stage = "build"
    status = 1

    def __init__(self, msg: str, returncode: Optional[int] = None) -> None:
        super().__init__(msg)
        self.returncode = returncode


class UsageError(BuildError):
    stage = "argument check"
    status = 2


class DirectoryCreationError(BuildError):
    stage = "prepare directory"
    status = 10


class DownloadError(BuildError):
    stage = "download"
    status = 11


class UnpackError(BuildError):
    stage = "unpack"
    status = 12


class ManifestReadError(BuildError):
    stage = "read manifest"
    status = 13


class ManifestWriteError(BuildError):
    stage = "write manifest"
    status = 14


class SourceCopyError(BuildError):
    stage = "copy source"
    status = 15


class ChangeDirectoryError(BuildError):
    stage = "enter source directory"
    status = 16


class ConfigureError(BuildError):
    stage = "configure"
    status = 17


class MakeError(BuildError):
    stage = "make"
    status = 18


class MakeInstallError(BuildError):
    stage = "make install"
    status = 19


class BinaryInstallError(BuildError):
    stage = "install binary"
    status = 20


class CommandError(Exception):
    """An external tool exited non-zero or could not be started."""

    def __init__(self, name: str, returncode: int) -> None:
        super().__init__(f"{name} exited with code {returncode}")
        self.name = name
        self.returncode = returncode
