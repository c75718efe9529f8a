"""Logging setup for the service.

Modules log through ``logging.getLogger(__name__)``; this module only decides
where records go and how verbose the process is.
"""

import logging
import re
import sys
from typing import Optional

from blobcord.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SensitiveDataFilter(logging.Filter):
    """Mask credentials that might end up in log messages."""

    PATTERNS = [
        (re.compile(r'(bot\s+)([A-Za-z0-9_\-\.]{20,})', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(authorization["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(secret["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._mask(arg) if isinstance(arg, str) else arg for arg in record.args)
        return True

    def _mask(self, value: str) -> str:
        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)
        return value


def setup_logging(level: Optional[int] = None) -> logging.Logger:
    """
    Configure the ``blobcord`` logger hierarchy.

    Development (or DEBUG_LOGS=true) logs everything from DEBUG up;
    production only keeps warnings and errors. Calling this twice does not
    stack handlers.
    """
    if level is None:
        level = logging.DEBUG if settings.verbose_logging else logging.WARNING

    logger = logging.getLogger("blobcord")
    logger.setLevel(level)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(SensitiveDataFilter())

    logger.addHandler(handler)
    logger.propagate = False
    return logger
