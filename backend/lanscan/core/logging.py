"""Root logger setup shared by the API application and the CLI."""

import logging
import sys
from typing import Optional

from .config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Level name overriding LOG_LEVEL (DEBUG forces DEBUG)
    """
    if level is None:
        level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    # zeroconf logs every malformed packet on the wire at WARNING
    logging.getLogger("zeroconf").setLevel(logging.ERROR)
