from __future__ import annotations
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_configured = False

def configure_logging(level_name: str = "INFO") -> None:
    """Attach a single stderr handler to the root logger (idempotent)."""
    global _configured
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    # uvicorn's access log duplicates what the instrumentator already counts
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))
    _configured = True
