from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Prefixed short id for saved rows, e.g. 'mcp-a1b2c3d4e5f6'."""
    return f"{prefix}-{uuid4().hex[:12]}"
