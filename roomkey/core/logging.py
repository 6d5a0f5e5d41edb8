# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import logging
import sys
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from io import StringIO
from pathlib import Path
from types import TracebackType
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Type, Union
from uuid import uuid4
from weakref import WeakValueDictionary

import loguru
from aiopath import AsyncPath
from loguru._logger import Logger
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text as RichText
from rich.traceback import Traceback as RichTraceback

from .data import Runtime

Level = Union[str, int]

LOG_FILE_NAME = "%Y%m%d-%H%M%S.%f.log"

FILE_FORMAT = (
    "{level} {time:YYYY-MM-DD HH:mm:ss.SSS} [{extra[owner]}] "
    "{name}.{function}:{line}\n{message}"
)

LEVEL_MARKS = {
    "DEBUG":    "*",
    "INFO":     "i",
    "WARNING":  "!",
    "ERROR":    "X",
    "CRITICAL": "F",
}


@dataclass
class KeyLogger:
    """Mixin giving each instance its own loguru logger.

    Records from INFO up are printed to stderr. If `log_directory` is set,
    every record also goes to a new file in it, one per instance.
    Records are tagged with `log_owner`, so that the output of several
    clients running in the same process can be told apart.
    """

    _instances: ClassVar[Runtime[WeakValueDictionary]] = WeakValueDictionary()

    # Log files from previous instances left in log_directory
    keep_log_files: ClassVar[Runtime[int]] = 9

    logger:        Runtime[Logger]   = field(init=False, repr=False)
    creation:      Runtime[datetime] = field(init=False, repr=False)
    _term_sink_id: Runtime[int]      = field(init=False, repr=False)


    def __post_init__(self) -> None:
        self.creation            = datetime.now()
        self._instances[uuid4()] = self
        self._reconfigure_logging()


    @property
    def log_owner(self) -> str:
        return type(self).__name__


    @property
    def log_directory(self) -> Optional[Path]:
        return None


    @property
    def current_log_file(self) -> Optional[AsyncPath]:
        if self.log_directory is None:
            return None

        name = self.creation.strftime(LOG_FILE_NAME)
        return AsyncPath(self.log_directory) / name


    def remove_terminal_logging(self) -> None:
        self.logger.remove(self._term_sink_id)


    def log(
        self,
        level: Level,
        msg:   str,
        *args,
        depth: int                = 0,
        trace: Union[bool, tuple] = False,
        **kwargs,
    ) -> None:
        logger = self.logger.opt(depth=1 + depth, exception=trace)
        logger.log(level, msg, *args, **kwargs)


    def debug(self, msg: str, *args, depth: int = 0, **kwargs) -> None:
        self.log("DEBUG", msg, *args, depth=depth + 1, **kwargs)


    def info(self, msg: str, *args, depth: int = 0, **kwargs) -> None:
        self.log("INFO", msg, *args, depth=depth + 1, **kwargs)


    def warn(self, msg: str, *args, depth: int = 0, **kwargs) -> None:
        self.log("WARNING", msg, *args, depth=depth + 1, **kwargs)


    def err(self, msg: str, *args, depth: int = 0, **kwargs) -> None:
        self.log("ERROR", msg, *args, depth=depth + 1, **kwargs)


    def crit(self, msg: str, *args, depth: int = 0, **kwargs) -> None:
        self.log("CRITICAL", msg, *args, depth=depth + 1, **kwargs)


    def exception(self, msg: str, *args, depth: int = 0, **kwargs) -> None:
        self.log("ERROR", msg, *args, depth=depth + 1, trace=True, **kwargs)


    @contextmanager
    def report(
        self,
        *types: Type[Exception],
        level:  Optional[Level] = None,
        trace:  bool            = False,
        depth:  int             = 0,
    ) -> Iterator[List[Exception]]:
        """Catch and log exceptions of the given `types`.

        Without an explicit `level`, an exception is logged at the
        `log_level` its class declares, or WARNING.
        The yielded list receives the caught exception, if any.
        """

        caught: List[Exception] = []

        try:
            yield caught
        except types as e:
            caught.append(e)
            level = level or getattr(e, "log_level", "WARNING")
            self.log(level, "{!r}", e, depth=2 + depth, trace=trace)


    def _reconfigure_logging(self) -> None:
        if hasattr(self, "logger"):
            self.logger.remove()

        loguru.logger.remove()
        logger      = deepcopy(loguru.logger)  # type: ignore
        self.logger = logger.bind(owner=self.log_owner)

        if self.current_log_file is not None:
            file = Path(self.current_log_file)
            prune_log_files(file.parent, self.keep_log_files)

            self.logger.add(
                str(file),
                level     = logging.NOTSET,
                backtrace = False,
                enqueue   = False,
                format    = format_file_record,
            )

        term_handler = TermLogHandler(
            console             = Console(file=sys.stderr, soft_wrap=True),
            log_time_format     = "%T",
            omit_repeated_times = False,
            rich_tracebacks     = True,
        )

        self._term_sink_id = self.logger.add(
            sink      = term_handler,
            level     = logging.INFO,
            backtrace = False,
            format    = lambda record: "[{extra[owner]}] {message}",
        )


class TermLogHandler(RichHandler):
    def get_level_text(self, record):
        return RichText.styled(
            LEVEL_MARKS[record.levelname],
            f"logging.level.{record.levelname.lower()}",
        )


def format_file_record(record: Dict[str, Any]) -> str:
    if record["exception"] is None:
        return FILE_FORMAT + "\n\n"

    record["extra"]["stack"] = render_traceback(*record["exception"])
    return FILE_FORMAT + "\n{extra[stack]}\n"


def render_traceback(
    type: Type[BaseException], value: BaseException, traceback: TracebackType,
) -> str:

    out   = StringIO()
    trace = RichTraceback.from_exception(
        type, value, traceback, show_locals=False, indent_guides=False,
    )

    Console(file=out, soft_wrap=True).print(trace)
    return out.getvalue()


def prune_log_files(directory: Path, keep: int) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    logs = sorted(directory.glob("*.log"), key=lambda f: f.name)

    for too_old in logs[:-keep or None]:
        too_old.unlink()


def log_uncaught_errors(
    type: Type[BaseException], value: BaseException, traceback: TracebackType,
) -> None:
    """Log errors nothing caught to every living `KeyLogger`."""

    if isinstance(value, Exception):  # not KeyboardInterrupt & co
        for instance in list(KeyLogger._instances.values()):
            instance.log(
                "ERROR",
                "Uncaught error, reported to every client:",
                trace = (type, value, traceback),
            )

    sys.__excepthook__(type, value, traceback)


sys.excepthook = log_uncaught_errors
