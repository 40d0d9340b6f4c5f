from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

ACCESS_LOGGER_NAME = "formmail.access"


def setup_logging(level: str, log_dir: str = "", *, access_log: bool = True) -> Path | None:
    """Configure root logging for the relay.

    Request lines from the WSGI server go to ``formmail.access``; with
    ``access_log`` off that logger only passes warnings and above. Form
    field values are never logged by the relay itself.
    """
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    root.addHandler(sh)

    logging.getLogger(ACCESS_LOGGER_NAME).setLevel(logging.NOTSET if access_log else logging.WARNING)

    if not log_dir:
        return None

    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"formmail-{datetime.now():%Y%m%d-%H%M%S}.log"

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setFormatter(formatter)
    root.addHandler(fh)
    return log_file
