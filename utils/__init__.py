from .formatters import format_points, format_currency, format_short_hash
from .validators import validate_amount, normalize_content_hash, validate_url, validate_phone
from .timeutils import utcnow, to_db, from_db
from .ttl_cache import TTLCache

__all__ = [
    "format_points",
    "format_currency",
    "format_short_hash",
    "validate_amount",
    "normalize_content_hash",
    "validate_url",
    "validate_phone",
    "utcnow",
    "to_db",
    "from_db",
    "TTLCache",
]
