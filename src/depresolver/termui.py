from __future__ import annotations

import contextlib
import enum
import logging
import os
import tempfile
from typing import TYPE_CHECKING

import rich
from rich.console import Console
from rich.theme import Theme

if TYPE_CHECKING:
    from typing import Any, Iterator

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG)
logger.addHandler(logging.NullHandler())
# Request lines of the HTTP client go to the same destination as ours
httpx_logger = logging.getLogger("httpx")

DEFAULT_THEME = {
    "primary": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "info": "blue",
    "req": "bold green",
}
_err_console = Console(stderr=True, theme=Theme(DEFAULT_THEME))
_LEGACY_WINDOWS = rich.get_console().legacy_windows

SPINNER = "line" if _LEGACY_WINDOWS else "dots"


class Emoji:
    SUCC = "v" if _LEGACY_WINDOWS else ":heavy_check_mark:"
    FAIL = "x" if _LEGACY_WINDOWS else ":heavy_multiplication_x:"


class Verbosity(enum.IntEnum):
    QUIET = -1
    NORMAL = 0
    DETAIL = 1
    DEBUG = 2


LOG_LEVELS = {
    Verbosity.NORMAL: logging.WARN,
    Verbosity.DETAIL: logging.INFO,
    Verbosity.DEBUG: logging.DEBUG,
}


class UI:
    """Console output and log destination of a run.

    ``log_dir`` is where :meth:`logging` keeps the debug log of a run at
    normal verbosity.
    """

    def __init__(
        self,
        verbosity: Verbosity = Verbosity.NORMAL,
        *,
        exit_stack: contextlib.ExitStack | None = None,
        log_dir: str | None = None,
    ) -> None:
        self.verbosity = verbosity
        self.exit_stack = exit_stack or contextlib.ExitStack()
        self.log_dir = log_dir

    def echo(self, message: str = "", err: bool = False, verbosity: Verbosity = Verbosity.QUIET, **kwargs: Any) -> None:
        """Print a message with rich markup when the verbosity is high enough."""
        if self.verbosity < verbosity:
            return
        console = _err_console if err else rich.get_console()
        if not console.is_interactive:
            kwargs.setdefault("crop", False)
            kwargs.setdefault("overflow", "ignore")
        console.print(message, **kwargs)

    def info(self, message: str, verbosity: Verbosity = Verbosity.NORMAL) -> None:
        self.echo(f"[info]INFO:[/] [dim]{message}[/]", err=True, verbosity=verbosity)

    def warn(self, message: str, verbosity: Verbosity = Verbosity.NORMAL) -> None:
        self.echo(f"[warning]WARNING:[/] {message}", err=True, verbosity=verbosity)

    def error(self, message: str, verbosity: Verbosity = Verbosity.QUIET) -> None:
        self.echo(f"[error]ERROR:[/] {message}", err=True, verbosity=verbosity)

    def _make_handler(self, type_: str) -> tuple[logging.Handler, str | None]:
        if self.verbosity >= Verbosity.DETAIL:
            handler: logging.Handler = logging.StreamHandler()
            handler.setLevel(LOG_LEVELS[self.verbosity])
            return handler, None
        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
        fd, log_file = tempfile.mkstemp(".log", f"depresolver-{type_}-", self.log_dir)
        os.close(fd)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        return handler, log_file

    @contextlib.contextmanager
    def logging(self, type_: str = "resolve") -> Iterator[logging.Logger]:
        """Send the log records of the block to stderr when verbose, otherwise to a
        log file that is removed when the exit stack closes, unless the block failed.
        """
        handler, log_file = self._make_handler(type_)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
        httpx_logger.addHandler(handler)
        try:
            yield logger
        except Exception:
            if log_file is not None:
                logger.exception("Error occurs")
                self.echo(f"See [warning]{log_file}[/] for detailed debug log.", style="error", err=True)
            raise
        else:
            if log_file is not None:
                self.exit_stack.callback(_remove_file, log_file)
        finally:
            logger.removeHandler(handler)
            httpx_logger.removeHandler(handler)
            handler.close()


def _remove_file(path: str) -> None:
    with contextlib.suppress(OSError):
        os.unlink(path)
