"""
Study Buddy Matchmaker - Chat Moderation

Profanity is masked outright. Likely personal-info sharing (phone numbers,
emails, links, social handles) is only flagged for review; the message is
still delivered.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from better_profanity import Profanity

PERSONAL_INFO_PATTERNS: Dict[str, "re.Pattern[str]"] = {
    "phone": re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "url": re.compile(r"\b(?:https?://|www\.)[^\s]+", re.IGNORECASE),
    "social": re.compile(
        r"\b(?:instagram|snapchat|discord|telegram|whatsapp|facebook|twitter|tiktok)\b",
        re.IGNORECASE,
    ),
}


@dataclass(frozen=True)
class ModerationResult:
    content: str
    flagged: bool
    original: str
    reason: Optional[str] = None


class ContentModerator:
    """
    Read-only after construction; safe to share across connections.

    Each moderator owns its own word filter, so extra words never leak
    into other instances.
    """

    def __init__(self, extra_words: Iterable[str] = (), placeholder: str = "*"):
        self.placeholder = placeholder
        self._profanity = Profanity()
        # Load the stock list now; censor() only loads it when the set is empty
        self._profanity.load_censor_words()
        extra = [w.lower() for w in extra_words]
        if extra:
            self._profanity.add_censor_words(extra)

    def clean(self, text: str) -> str:
        return self._profanity.censor(text, self.placeholder)

    def moderate(self, text: str) -> ModerationResult:
        cleaned = self.clean(text)

        reason = None
        for name, pattern in PERSONAL_INFO_PATTERNS.items():
            if pattern.search(text):
                reason = name
                break
        if reason is None and cleaned != text:
            reason = "profanity"

        return ModerationResult(
            content=cleaned,
            flagged=reason is not None,
            original=text,
            reason=reason,
        )


_default_moderator = ContentModerator()


def moderate(text: str) -> ModerationResult:
    """Moderate text with the default word list"""
    return _default_moderator.moderate(text)
