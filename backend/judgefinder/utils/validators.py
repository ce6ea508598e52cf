"""
Custom validators
"""
import re

from judgefinder.utils.exceptions import ValidationError

MAX_QUERY_LENGTH = 100

_NOISE_WORDS = re.compile(r"(?<![\w.])(judges|judge|hon\.|justice|magistrate)(?![\w])", re.IGNORECASE)


def sanitize_search_query(query: str) -> str:
    """
    Strip markup and SQL comment characters from a raw search string.
    Apostrophes are kept (O'Brien).
    """
    if not query:
        return ""
    text = query.strip()
    text = re.sub(r"[<>]", "", text)
    text = re.sub(r"script", "", text, flags=re.IGNORECASE)
    text = re.sub(r'[;"]', "", text)
    text = text.replace("--", "")
    return text[:MAX_QUERY_LENGTH].strip()


def normalize_judge_search_query(query: str) -> str:
    """
    Drop noise tokens users type in front of names ("Judge", "Hon.").
    Falls back to the sanitized input if nothing would remain.
    """
    sanitized = sanitize_search_query(query)
    cleaned = _NOISE_WORDS.sub(" ", sanitized)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or sanitized


def validate_pagination(limit: int, page: int, max_limit: int) -> None:
    if limit < 1:
        raise ValidationError("limit must be at least 1", field="limit")
    if limit > max_limit:
        raise ValidationError(f"Limit cannot exceed {max_limit}", field="limit")
    if page < 1:
        raise ValidationError("page must be at least 1", field="page")
