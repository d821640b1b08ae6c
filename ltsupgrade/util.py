import logging
import os
import re
import time
from functools import wraps
from typing import Callable, Dict, List, Optional  # noqa: F401

from ltsupgrade.defaults import CONFIG_FIELD_ENVVAR_ALLOWLIST


def replace_top_level_logger_name(name: str) -> str:
    """Replace the name of the root logger from __name__"""
    if name == "":
        return ""
    names = name.split(".")
    names[0] = "ltsupgrade"
    return ".".join(names)


LOG = logging.getLogger(replace_top_level_logger_name(__name__))


def retry(
    exception,
    retry_sleeps: List[float],
    before_attempt: Optional[Callable[[], None]] = None,
):
    """Decorator to retry on exception for retry_sleeps.

    @param retry_sleeps: List of sleep lengths to apply between
       retries. Specifying a list of [0.5, 1] tells subp to retry twice
       on failure; sleeping half a second before the first retry and 1 second
       before the second retry.
    @param exception: The exception class to catch and retry for the provided
       retry_sleeps. Any other exception types will not be caught by the
       decorator.
    @param before_attempt: Optional callable run before every attempt,
       including the first one. Used to clear known transient blockers.
    """

    def wrapper(f):
        @wraps(f)
        def decorator(*args, **kwargs):
            sleeps = list(retry_sleeps)
            while True:
                if before_attempt is not None:
                    before_attempt()
                try:
                    return f(*args, **kwargs)
                except exception as e:
                    if not sleeps:
                        raise e
                    LOG.debug(
                        "%s: Retrying %d more times.", str(e), len(sleeps)
                    )
                    time.sleep(sleeps.pop(0))

        return decorator

    return wrapper


def backoff_sleeps(attempts: int, base_delay: float) -> List[float]:
    """Return the sleeps between ``attempts`` tries, doubling every time.

    backoff_sleeps(4, 10) == [10, 20, 40]
    """
    return [base_delay * (2**n) for n in range(max(attempts - 1, 0))]


def tail(text: str, lines: int) -> str:
    """Return the last ``lines`` non-empty lines of text."""
    if not text or lines <= 0:
        return ""
    content = [line for line in text.splitlines() if line.strip()]
    return "\n".join(content[-lines:])


REDACT_SENSITIVE_LOGS = [
    r"(PASSWORD \')[^\']+",
    r"(PASSWORD \")[^\"]+",
    r"(\'password\': \')[^\']+",
    r"(PGPASSWORD=)[^\s]+",
    r"(https?://[^:/\s]+:)[^\@\s]+(?=@)",
]


def redact_sensitive_logs(
    log, redact_regexs: List[str] = REDACT_SENSITIVE_LOGS
) -> str:
    """Redact known sensitive information from log content."""
    redacted_log = log
    for redact_regex in redact_regexs:
        redacted_log = re.sub(redact_regex, r"\g<1><REDACTED>", redacted_log)
    return redacted_log


def get_upgrader_environment() -> Dict[str, str]:
    return {
        k: v
        for k, v in os.environ.items()
        if k.lower() in CONFIG_FIELD_ENVVAR_ALLOWLIST
        or k.startswith("LTS_UPGRADE")
    }


def we_are_currently_root() -> bool:
    return os.getuid() == 0
