import json
from datetime import datetime, timezone
from logging import INFO, Logger
from typing import Any, Dict

from agent_gateway.util import redact


def log_json(logger: Logger, event: str, level: int = INFO, **fields: Any) -> None:
    """Emit one JSON event line.

    The serialized line always passes through pattern redaction, so gateway
    events cannot carry token-shaped values even when a caller forgets to
    scrub a field.
    """
    if not logger.isEnabledFor(level):
        return
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    payload.update(fields)
    logger.log(level, redact(json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str)))
