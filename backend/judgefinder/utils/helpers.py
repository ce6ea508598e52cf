"""
Utility helper functions
"""
from datetime import date, datetime
import re
import unicodedata
from typing import Any, Optional

def slugify(text: str) -> str:
    """Convert text to URL-friendly slug"""
    text = strip_accents(text or "").lower()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[-\s_]+", "-", text)
    return text.strip("-")

def strip_accents(text: str) -> str:
    """José -> Jose (mirrors PostgreSQL unaccent for Latin names)"""
    normalized = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))

def parse_date(value: Any) -> Optional[date]:
    """Accepts date, datetime, or ISO strings ('2021-03-04', '2021-03-04T10:00:00Z')."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None

def truncate_text(text: str, length: int = 100) -> str:
    """Truncate text to specified length"""
    if len(text) <= length:
        return text
    return text[:length] + "..."
