"""JSON-line logging for Lambda (one object per line, queryable in Logs Insights)."""

import json
import logging

_FORMAT = "[%(levelname)1.1s %(asctime)s %(name)s] %(message)s"


def configure(level="INFO"):
    """Set the root level; reuse Lambda's pre-installed handler when present."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    try:
        root.setLevel(str(level).upper())
    except ValueError:
        root.setLevel(logging.INFO)
        root.warning(json.dumps({"stage": "log_level_invalid", "value": level}))


def log_event(logger, stage, level=logging.INFO, **fields):
    """Emit ``{"stage": stage, **fields}`` as a single JSON line."""
    payload = {"stage": stage}
    payload.update(fields)
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))
