from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os
from logging import Logger


debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.DEBUG if debug_mode else logging.INFO

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_ANSI_RESET = "\033[0m"
_COLOR_MAP: dict[str, str] = {
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "white": "\033[37m",
}
_LEVEL_PREFIX = {logging.ERROR: "⛔ ", logging.CRITICAL: "⛔ ", logging.WARNING: "⚠️ "}

# chatty at INFO: one line per request / per filesystem event batch / per table scan
_NOISY_LOGGERS = ("httpx", "httpcore", "watchfiles", "lancedb", "pypdf")


class WatchfilesFilter(logging.Filter):
    """Drop the "N changes detected" records watchfiles emits for every batch."""

    def filter(self, record):
        return not (record.name.startswith("watchfiles") and "changes detected" in str(record.msg))


class CustomFormatter(logging.Formatter):
    """Timezone-aware timestamps plus an emoji prefix for warnings and errors."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        # every handler formats the same record, prefix a copy
        record = logging.makeLogRecord(record.__dict__)
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # third-party record with broken %-args
            message = str(record.msg)
        record.msg = _LEVEL_PREFIX.get(record.levelno, "") + message
        record.args = ()
        return super().format(record)


class ColoredFormatter(CustomFormatter):
    """Console formatter; colors a line when the record carries ``color``."""

    def format(self, record) -> str:
        line = super().format(record)
        ansi = _COLOR_MAP.get(getattr(record, "color", None) or "", "")
        return f"{ansi}{line}{_ANSI_RESET}" if ansi and line else line


class ColorLogger:
    """Wraps a :class:`logging.Logger` and accepts ``color=<name>`` on every log call.

    Usage::

        logger.info("topic created", color="green")
        logger.warning("model mismatch", color="yellow")

    Only the console handler renders the color; the log file stays plain.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def log(self, level: int, msg, *args, color: str | None = None, **kwargs):
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        kwargs.setdefault("stacklevel", 2)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, stacklevel=3, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.log(logging.INFO, msg, *args, stacklevel=3, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, stacklevel=3, **kwargs)

    def error(self, msg, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, stacklevel=3, **kwargs)

    def critical(self, msg, *args, **kwargs):
        self.log(logging.CRITICAL, msg, *args, stacklevel=3, **kwargs)

    def exception(self, msg, *args, **kwargs):
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, msg, *args, stacklevel=3, **kwargs)

    def __getattr__(self, name):
        # setLevel, handlers, isEnabledFor, ...
        return getattr(self._logger, name)


def _build_config(log_file: str, tz_name: str) -> dict:
    def formatter(cls) -> dict:
        return {"()": cls, "format": LOG_FORMAT, "datefmt": LOG_DATEFMT, "tz_name": tz_name}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": formatter(CustomFormatter), "colored": formatter(ColoredFormatter)},
        "filters": {"watchfiles": {"()": WatchfilesFilter}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "colored",
                "filters": ["watchfiles"],
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "standard",
                "filters": ["watchfiles"],
                "level": loglevel,
                "filename": log_file,
                "maxBytes": int(os.getenv("LOG_MAX_BYTES", 5 * 1024 * 1024)),
                "backupCount": int(os.getenv("LOG_BACKUP_COUNT", 3)),
                "encoding": "utf-8",
            },
        },
        "root": {"handlers": ["console", "file"], "level": loglevel},
    }


def setup_logging() -> ColorLogger:
    """Configure console + rotating file logging under $ROOT_DIR/logs and return the app logger."""
    log_dir = os.path.join(os.getenv("ROOT_DIR", os.getcwd()), "logs")
    os.makedirs(log_dir, exist_ok=True)
    logging.config.dictConfig(_build_config(os.path.join(log_dir, "app.log"), os.getenv("TIMEZONE", "Europe/Berlin")))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return ColorLogger(logging.getLogger("localrag"))
