"""Keyword matching against post text."""

WILDCARD = "*"


def normalize_keywords(keywords: list[str] | None) -> list[str]:
    """Strip keywords and drop blanks, keeping order."""
    if not keywords:
        return []
    return [kw.strip() for kw in keywords if kw and kw.strip()]


def is_wildcard(keywords: list[str] | None) -> bool:
    """True when the keyword set means "match everything"."""
    cleaned = normalize_keywords(keywords)
    return not cleaned or cleaned == [WILDCARD]


class KeywordMatcher:
    """Case-insensitive substring matcher.

    An empty keyword list, ``[""]`` or ``["*"]`` matches everything and
    returns ``["*"]``. Otherwise the keywords found in the text are
    returned in the order given, with their original spelling.
    """

    def match(self, text: str, keywords: list[str] | None) -> list[str]:
        if is_wildcard(keywords):
            return [WILDCARD]

        text_lower = (text or "").lower()
        return [kw for kw in normalize_keywords(keywords) if kw.lower() in text_lower]

    def matches(self, text: str, keywords: list[str] | None) -> bool:
        return bool(self.match(text, keywords))
