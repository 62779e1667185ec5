import json


def safe_parse_json_list(raw: str) -> list[str]:
    """Parse a JSON array of strings, returning empty list on failure."""
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]
