import logging
from typing import Literal

LOCAL_FORMAT = "[%(levelname)7s] %(name)s: %(message)s (%(filename)s:%(lineno)d)"
PROD_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "redis")

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class ContextFormatter(logging.Formatter):
    """Appends ``extra=`` fields such as ``ip`` or ``rejection_reason`` as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
        }
        if not context:
            return line
        pairs = " ".join(f"{key}={value!r}" for key, value in sorted(context.items()))
        return f"{line} | {pairs}"


def setup_logging(env: Literal["local", "dev", "prod"]) -> None:
    """Route the root logger through ``ContextFormatter``."""
    verbose = env in ("local", "dev")
    handler = logging.StreamHandler()
    handler.setFormatter(ContextFormatter(LOCAL_FORMAT if verbose else PROD_FORMAT))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=[handler],
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
