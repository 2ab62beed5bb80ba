"""
Logging shared by every docforge module.

Modules log through `logger` (the "docforge" logger). The embedding
application calls `setup_logging()` once: docforge records then go to one
file per day under LOG_DIR, and the root logger gets a console handler if
it has none.
"""

import datetime
import logging
from pathlib import Path
from typing import IO, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

LOGGER_NAME = "docforge"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_RETENTION_DAYS = 7

_LOGGING_CONFIGURED = False


def resolve_timezone(name: Optional[str]) -> datetime.tzinfo:
    """
    Zone for log timestamps: the named zone when it exists, otherwise the
    system local zone.
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc


class ZonedFormatter(logging.Formatter):
    def __init__(self, fmt: str = LOG_FORMAT, *, tz: Optional[datetime.tzinfo] = None) -> None:
        super().__init__(fmt)
        self.tz = tz or resolve_timezone(None)

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        moment = datetime.datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return moment.strftime(datefmt)
        return moment.isoformat(timespec="milliseconds")


class DailyLogFile(logging.Handler):
    """
    Appends records to <directory>/<prefix>-YYYY-MM-DD.log, switching files
    when the date changes. Only the newest `keep` files are kept.
    """

    def __init__(
        self,
        directory: Path,
        prefix: str = LOGGER_NAME,
        keep: int = LOG_RETENTION_DAYS,
        encoding: str = "utf-8",
    ) -> None:
        super().__init__()
        self.directory = Path(directory)
        self.prefix = prefix
        self.keep = keep
        self.encoding = encoding
        self._day: Optional[datetime.date] = None
        self._stream: Optional[IO[str]] = None
        self._roll(datetime.date.today())

    def path_for(self, day: datetime.date) -> Path:
        return self.directory / f"{self.prefix}-{day.isoformat()}.log"

    def _roll(self, day: datetime.date) -> None:
        if self._stream is not None:
            self._stream.close()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._stream = self.path_for(day).open("a", encoding=self.encoding)
        self._day = day
        self._prune()

    def _prune(self) -> None:
        if self.keep <= 0:
            return
        # ISO dates in the name make lexical order chronological.
        files = sorted(self.directory.glob(f"{self.prefix}-*.log"))
        for stale in files[: -self.keep]:
            try:
                stale.unlink()
            except OSError:
                pass

    def emit(self, record: logging.LogRecord) -> None:
        try:
            today = datetime.date.today()
            if today != self._day or self._stream is None:
                self._roll(today)
            self._stream.write(self.format(record) + "\n")
            self._stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self.acquire()
        try:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
        finally:
            self.release()
        super().close()


def setup_logging(log_dir: Optional[Path] = None, *, level: Optional[str] = None) -> logging.Logger:
    """
    Configure docforge logging. Repeated calls are no-ops and return the
    already configured logger.
    """
    global _LOGGING_CONFIGURED
    app_logger = logging.getLogger(LOGGER_NAME)
    if _LOGGING_CONFIGURED:
        return app_logger

    level_value = logging.getLevelName((level or settings.log_level or "INFO").upper())
    if not isinstance(level_value, int):
        level_value = logging.INFO
    formatter = ZonedFormatter(tz=resolve_timezone(settings.log_timezone))

    daily = DailyLogFile(Path(log_dir or settings.log_dir))
    daily.setFormatter(formatter)
    daily.addFilter(logging.Filter(LOGGER_NAME))
    app_logger.addHandler(daily)
    app_logger.setLevel(level_value)
    app_logger.propagate = True

    root = logging.getLogger()
    if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    _LOGGING_CONFIGURED = True
    return app_logger


logger = logging.getLogger(LOGGER_NAME)
