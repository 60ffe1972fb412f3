"""Logging setup shared by the API process and scripts."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    # Uvicorn reloads can call this twice; keep a single handler
    if any(getattr(h, "_barangay", False) for h in root.handlers):
        root.setLevel(level.upper())
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._barangay = True
    root.addHandler(handler)
    root.setLevel(level.upper())
