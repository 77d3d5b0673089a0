import logging
import sys

from src.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def configure_logging(settings: Settings) -> None:
    """Install a single stream handler on the root logger"""
    root = logging.getLogger()
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root.setLevel(level)
    
    for handler in list(root.handlers):
        if getattr(handler, "_ferry_access", False):
            root.removeHandler(handler)
    
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._ferry_access = True
    root.addHandler(handler)
    
    # uvicorn's access log duplicates the scan logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
