from app.utils.ids import generate_id
from app.utils.json_helpers import safe_parse_json_list
from app.utils.time import utc_now_iso

__all__ = [
    "generate_id",
    "safe_parse_json_list",
    "utc_now_iso",
]
