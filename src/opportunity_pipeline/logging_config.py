from __future__ import annotations

import logging

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logging.basicConfig(level=resolved, format=_LOG_FORMAT, force=True)
    # requests/urllib3 log every connection at DEBUG.
    logging.getLogger("urllib3").setLevel(max(resolved, logging.WARNING))
