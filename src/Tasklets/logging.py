# logging.py

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog
from structlog.contextvars import merge_contextvars

from Tasklets.config import Settings


def setup_logging(settings: Settings | None = None) -> None:
    """Initialize structlog + stdlib logging.

    Console logs go to stderr so the import summary on stdout stays clean.
    If settings are provided, per-handler levels and the rotating JSONL file
    follow the [logging] config; NONE disables a handler.
    """
    level_name = (settings.logging_level if settings else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.captureWarnings(True)

    # ProcessorFormatter renders BOTH structlog and stdlib/third-party logs as JSON
    processor_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            # Pull run-local context (e.g., run_id) from contextvars
            merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=[
            structlog.processors.add_log_level,
            merge_contextvars,
        ],
    )

    root_handlers: list[logging.Handler] = []
    console_lvl_name = settings.logging_console if settings is not None else level_name
    if (console_lvl_name or "").upper() != "NONE":
        ch = logging.StreamHandler()
        ch.setLevel(getattr(logging, console_lvl_name.upper(), level))
        ch.setFormatter(processor_formatter)
        root_handlers.append(ch)

    file_lvl_name = settings.logging_file if settings is not None else level_name
    if (file_lvl_name or "").upper() != "NONE":
        path = (
            settings.logging_file_path if settings is not None else "logs/tasklets-import.jsonl"
        )
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fh = RotatingFileHandler(
            path,
            maxBytes=(settings.logging_max_bytes if settings else 5_000_000),
            backupCount=(settings.logging_backup_count if settings else 5),
        )
        fh.setLevel(getattr(logging, file_lvl_name.upper(), level))
        fh.setFormatter(processor_formatter)
        root_handlers.append(fh)

    # force=True replaces any prior configuration
    logging.basicConfig(level=level, handlers=root_handlers, force=True)

    # SQLAlchemy echoes through its own loggers; keep them on our handlers
    for name in ("sqlalchemy.engine", "aiosqlite", "asyncio"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def redact_settings(settings: Settings) -> dict:
    """Return a redacted dict of settings safe for logging.

    Passwords and anything that looks like a secret become "[REDACTED]"; the
    database URL keeps everything but its password.
    """
    data = settings.model_dump()
    for k in list(data.keys()):
        if k.endswith("_password") or k.endswith("_token") or k.endswith("_secret"):
            data[k] = "[REDACTED]"
    url = data.get("database_url")
    if isinstance(url, str):
        from sqlalchemy.engine import make_url
        from sqlalchemy.exc import ArgumentError

        try:
            data["database_url"] = make_url(url).render_as_string(hide_password=True)
        except ArgumentError:
            data["database_url"] = "[REDACTED]"
    return data
