import logging
import sys
from pathlib import Path

from app.core.config import settings

BACKEND_ROOT = Path(__file__).resolve().parents[2]
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging() -> None:
    """Install stdout and file handlers on the root logger. Safe to call twice."""
    global _configured
    if _configured:
        return

    handlers = [logging.StreamHandler(sys.stdout)]
    try:
        log_dir = BACKEND_ROOT / settings.LOG_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / settings.LOG_FILE, encoding="utf-8"))
    except OSError:
        # Read-only filesystems still get stdout logging
        pass

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
