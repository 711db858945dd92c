from typing import Optional

from rich.console import Console
from rich.markup import escape

from .errors import UsageError


LOG_COLOR = {
    "trace": "dim",
    "debug": "bright_black",
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
    "success": "green",
    "step": "magenta",
    "run": "blue",
}

# accepted case-insensitively by --log
LEVELS = {
    "ALL": 0,
    "TRACE": 5,
    "DEBUG": 10,
    "INFO": 20,
    "WARN": 30,
    "ERROR": 40,
    "FATAL": 50,
    "OFF": 100,
}


def parse_level(name: str) -> str:
    level = name.upper()
    if level not in LEVELS:
        raise UsageError(f"Unknown log level: {name} (expected one of {', '.join(LEVELS)})")
    return level


class BuildLog:
    """Console logger handed to every build stage.

    Lines keep the ``[TAG]: message`` shape and are dropped when their level
    is below the configured threshold. Messages are escaped, so compiler
    output containing square brackets prints verbatim.
    """

    def __init__(self, level: str = "INFO", console: Optional[Console] = None) -> None:
        self.level = parse_level(level)
        self.console = console if console is not None else Console()

    def enabled(self, level: str) -> bool:
        return LEVELS[level] >= LEVELS[self.level]

    def _emit(self, level: str, tag: str, color: str, msg: str) -> None:
        if not self.enabled(level):
            return
        self.console.print(f"[{LOG_COLOR[color]}][{tag}][/]: {escape(msg)}", highlight=False)

    def trace(self, msg: str) -> None:
        self._emit("TRACE", "TRACE", "trace", msg)

    def debug(self, msg: str) -> None:
        self._emit("DEBUG", "DEBUG", "debug", msg)

    def info(self, msg: str) -> None:
        self._emit("INFO", "INFO", "info", msg)

    def step(self, msg: str) -> None:
        self._emit("INFO", "STEP", "step", msg)

    def run(self, msg: str) -> None:
        self._emit("DEBUG", "RUN", "run", msg)

    def warn(self, msg: str) -> None:
        self._emit("WARN", "WARNING", "warning", msg)

    def error(self, msg: str) -> None:
        self._emit("ERROR", "ERROR", "error", msg)

    def fatal(self, msg: str) -> None:
        self._emit("FATAL", "FATAL", "error", msg)

    def success(self, msg: str) -> None:
        self._emit("INFO", "DONE", "success", msg)
