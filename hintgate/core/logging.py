"""Logging configuration for the backend."""
import logging
import sys
from typing import Optional
from hintgate.core.config import settings

# Client libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "openai", "websockets")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application logging."""
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))


logger = logging.getLogger("hintgate")
