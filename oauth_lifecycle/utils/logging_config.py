"""Logging setup for the CLI and for applications embedding oauth_lifecycle.

Loggers follow the package layout (``oauth_lifecycle.oauth.oauth_flow``,
``oauth_lifecycle.storage.state_store`` and so on). Audit events go to the
separate ``oauth_lifecycle.audit`` logger as one JSON object per line, so they
can be split into their own file without the human-readable prefix.
"""

import logging
import os
from pathlib import Path

ROOT_LOGGER_NAME = "oauth_lifecycle"
AUDIT_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.audit"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log request URLs (including query strings) at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp.access")


def setup_logging(
    name: str = ROOT_LOGGER_NAME,
    level: str | None = None,
    log_file: Path | None = None,
    audit_log_file: Path | None = None,
) -> logging.Logger:
    """Configure root logging and, optionally, a dedicated audit log.

    Args:
        name: Logger to return (typically __name__ from the caller)
        level: Log level (defaults to LOG_LEVEL env var or INFO)
        log_file: Also write all records to this file
        audit_log_file: Write audit events here as bare JSON lines instead of
            mixing them into the main log

    Returns:
        The logger called ``name``
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    configure_audit_logger(audit_log_file)
    return logging.getLogger(name)


def configure_audit_logger(audit_log_file: Path | None = None) -> logging.Logger:
    """Route ``oauth_lifecycle.audit`` to its own file, or back to the root log.

    Audit events are emitted at INFO, so the audit logger keeps INFO even when
    the rest of the package is quieter.
    """
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    audit_logger.setLevel(logging.INFO)
    if audit_log_file is None:
        audit_logger.propagate = True
        return audit_logger

    audit_log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(audit_log_file)
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.propagate = False
    return audit_logger
