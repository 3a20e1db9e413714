from datetime import datetime, timezone
from typing import Iterable, Optional
import re
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_session_token() -> str:
    return str(uuid.uuid4())


def normalize_utterance(text: str) -> str:
    """
    Lowercase and collapse whitespace so phrase matching is stable
    Example: "  I'll   TAKE it " -> "i'll take it"
    """
    if not text:
        return ""
    text = text.replace("’", "'")
    return re.sub(r"\s+", " ", text).strip().lower()


def find_phrase(text: str, phrases: Iterable[str]) -> Optional[str]:
    """Return the first phrase contained in ``text`` (case-insensitive substring), or None."""
    normalized = normalize_utterance(text)
    if not normalized:
        return None
    for phrase in phrases:
        p = normalize_utterance(phrase)
        if p and p in normalized:
            return phrase
    return None


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text for log lines"""
    if not text or len(text) <= max_length:
        return text or ""
    return text[:max_length - 3] + "..."
