from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Timestamp format stored in created_at / last_connected_at."""
    return datetime.now(timezone.utc).isoformat()
