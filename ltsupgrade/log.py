import json
import logging
import logging.handlers
import os
import sys
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Union  # noqa: F401

from ltsupgrade import defaults, util

STAT = 21
AUDIT = 22

logging.addLevelName(STAT, "STAT")
logging.addLevelName(AUDIT, "AUDIT")

ROOT_LOGGER_NAME = "ltsupgrade"


class RegexRedactionFilter(logging.Filter):
    """A logging filter to redact confidential info"""

    def filter(self, record: logging.LogRecord):
        record.msg = util.redact_sensitive_logs(str(record.msg))
        return True


class LevelRangeFilter(logging.Filter):
    """Let through records whose level is in [min_level, max_level]

    Levels listed in exclude are dropped even when inside the range.
    """

    def __init__(
        self,
        min_level: int = logging.NOTSET,
        max_level: int = logging.CRITICAL,
        exclude: Optional[List[int]] = None,
    ):
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level
        self.exclude = exclude or []

    def filter(self, record: logging.LogRecord):
        if record.levelno in self.exclude:
            return False
        return self.min_level <= record.levelno <= self.max_level


class JsonArrayFormatter(logging.Formatter):
    """Json Array Formatter for our logging mechanism

    The logger name is the component tag of every entry.
    """

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03d"
    required_fields = (
        "asctime",
        "levelname",
        "name",
        "funcName",
        "lineno",
        "message",
    )

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        record.asctime = self.formatTime(record)

        extra_message_dict = {}  # type: Dict[str, Any]
        if record.exc_info:
            extra_message_dict["exc_info"] = self.formatException(
                record.exc_info
            )
        if not extra_message_dict.get("exc_info") and record.exc_text:
            extra_message_dict["exc_info"] = record.exc_text
        if record.stack_info:
            extra_message_dict["stack_info"] = self.formatStack(
                record.stack_info
            )
        extra = record.__dict__.get("extra")
        if extra and isinstance(extra, dict):
            extra_message_dict.update(extra)

        # is ordered to maintain order of fields in log output
        local_log_record = OrderedDict()  # type: Dict[str, Any]
        for field in self.required_fields:
            local_log_record[field] = record.__dict__.get(field)

        local_log_record["extra"] = extra_message_dict
        return json.dumps(list(local_log_record.values()))


def stat(logger: logging.Logger, msg: str, *args, **kwargs):
    """Log a system metric sample, routed to the stats log only."""
    logger.log(STAT, msg, *args, **kwargs)


def audit(logger: logging.Logger, msg: str, *args, **kwargs):
    """Log an operator-relevant change of the host or of the upgrade."""
    logger.log(AUDIT, msg, *args, **kwargs)


def _rotating_file_handler(
    log_dir: str, file_name: str, level_filter: logging.Filter
) -> logging.Handler:
    log_file = os.path.join(log_dir, file_name)
    if not os.path.exists(log_file):
        # created before the handler opens it so the mode sticks
        with open(log_file, "a"):
            pass
        os.chmod(log_file, defaults.ROOT_READABLE_MODE)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=defaults.LOG_MAX_BYTES,
        backupCount=defaults.LOG_BACKUP_COUNT,
    )
    handler.setFormatter(JsonArrayFormatter())
    handler.setLevel(logging.DEBUG)
    handler.addFilter(level_filter)
    handler.addFilter(RegexRedactionFilter())
    return handler


def get_file_handlers(log_dir: str) -> List[logging.Handler]:
    return [
        _rotating_file_handler(
            log_dir,
            defaults.MAIN_LOG_FILE,
            LevelRangeFilter(min_level=logging.INFO, exclude=[STAT]),
        ),
        _rotating_file_handler(
            log_dir,
            defaults.ERROR_LOG_FILE,
            LevelRangeFilter(min_level=logging.ERROR),
        ),
        _rotating_file_handler(
            log_dir, defaults.DEBUG_LOG_FILE, LevelRangeFilter()
        ),
        _rotating_file_handler(
            log_dir,
            defaults.STATS_LOG_FILE,
            LevelRangeFilter(min_level=STAT, max_level=STAT),
        ),
    ]


def get_syslog_handler() -> Optional[logging.Handler]:
    """Mirror errors to the system log, when the host has one."""
    if not os.path.exists(defaults.SYSLOG_SOCKET):
        return None
    try:
        handler = logging.handlers.SysLogHandler(
            address=defaults.SYSLOG_SOCKET
        )
    except OSError as e:
        print(
            "Unable to connect to {}: {}".format(defaults.SYSLOG_SOCKET, e),
            file=sys.stderr,
        )
        return None
    handler.ident = defaults.SYSLOG_IDENT + ": "
    handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    handler.setLevel(logging.ERROR)
    handler.addFilter(RegexRedactionFilter())
    return handler


def setup_logging(
    log_level: Union[str, int], log_dir: str, console: bool = False
):
    """Setup the upgrader loggers

    Every level goes to debug.log; the other files receive a slice of the
    levels. Files below log_level are not written at all.

    @param log_level: threshold of the root upgrader logger.
    @param log_dir: directory holding the log files, created if missing.
    @param console: mirror records to stderr using the plain text format.
    """
    # support lower-case log_level config value
    if isinstance(log_level, str):
        log_level = log_level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)

    # Clear all handlers, so they are replaced for this logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []

    os.makedirs(log_dir, mode=defaults.PRIVATE_DIR_MODE, exist_ok=True)
    for handler in get_file_handlers(log_dir):
        logger.addHandler(handler)

    syslog_handler = get_syslog_handler()
    if syslog_handler is not None:
        logger.addHandler(syslog_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter(defaults.DEFAULT_LOG_FORMAT)
        )
        console_handler.setLevel(logging.DEBUG)
        console_handler.addFilter(RegexRedactionFilter())
        logger.addHandler(console_handler)
