"""
Process-wide logging setup.

Logging goes to stderr only. Loggers are named ``casesign.<area>`` and
emit snake_case event names with structured context in ``extra``.
Secrets (passwords, key material) are never logged.
"""

import logging
import os
import sys

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """
    Configure root logging once.

    The level comes from the argument, then ``CASESIGN_LOG_LEVEL``,
    then defaults to INFO. Existing handlers are left alone so that
    test runners and ASGI servers keep their own configuration.
    """
    resolved = (level or os.getenv("CASESIGN_LOG_LEVEL") or "INFO").upper()

    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        stream=sys.stderr,
        format=_FORMAT,
    )
    logging.getLogger("casesign").setLevel(
        getattr(logging, resolved, logging.INFO)
    )
