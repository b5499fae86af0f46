import hashlib
import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("allegro_connector")


def token_fingerprint(token: Optional[str]) -> str:
    """Short SHA-256 fingerprint so logs can tell tokens apart without exposing them."""
    if not token:
        return "empty"
    return hashlib.sha256(token.encode()).hexdigest()[:16]


SECRET_KEYS = frozenset({
    "client_id", "client_secret", "access_token", "refresh_token",
    "code", "code_verifier", "authorization",
})


def mask_secret(value: Any) -> str:
    text = str(value)
    return f"{text[:4]}...{text[-4:]}" if len(text) > 8 else "***"


def _masked(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not data:
        return None
    return {
        key: mask_secret(value) if key in SECRET_KEYS and value is not None else value
        for key, value in data.items()
    }


class AllegroConnectionLogger:
    """Ring of recent OAuth events, served by ``/api/allegro/oauth/logs``."""

    def __init__(self, max_logs: int = 1000):
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=max_logs)

    def log_allegro_event(
        self,
        event_type: str,
        description: str,
        request_data: Optional[Dict[str, Any]] = None,
        response_data: Optional[Dict[str, Any]] = None,
        status: str = "info",
        error: Optional[str] = None
    ) -> Dict[str, Any]:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "description": description,
            "request_data": _masked(request_data),
            "response_data": _masked(response_data),
            "status": status,
            "error": error,
        }
        self._entries.append(entry)

        if error:
            logger.error(f"[{event_type}] {description} - Error: {error}")
        else:
            logger.info(f"[{event_type}] {description}")
        return entry

    def get_logs(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        entries = list(self._entries)
        return entries[-limit:] if limit else entries

    def clear_logs(self) -> None:
        self._entries.clear()
        logger.info("Cleared Allegro connection logs")


allegro_logger = AllegroConnectionLogger()
