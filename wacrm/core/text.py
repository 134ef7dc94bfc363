"""Locale text helpers (pt-BR)."""

from datetime import date, datetime

# Articles, prepositions and contractions kept lowercase in titles
MINOR_WORDS = frozenset(
    {
        "a", "o", "as", "os",
        "da", "de", "do", "das", "dos",
        "e", "em", "na", "no", "nas", "nos",
        "com", "para", "por",
    }
)

_DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d-%m-%Y", "%d/%m/%y")


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:].lower()


def to_title_case(value: str | None) -> str:
    """Title-case a name or address, keeping Portuguese minor words lowercase.

    >>> to_title_case("RUA DA CONSOLAÇÃO")
    'Rua da Consolação'
    """
    if not value:
        return ""
    words = value.split()
    result = []
    for i, word in enumerate(words):
        lowered = word.lower()
        if i > 0 and lowered in MINOR_WORDS:
            result.append(lowered)
        else:
            result.append(_capitalize(word))
    return " ".join(result)


def parse_date(value: str | date | None) -> date | None:
    """Parse a user supplied date, returning None when it cannot be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = value.strip()
    if not text:
        return None

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def truncate(value: str | None, length: int = 100) -> str:
    """Cut a preview string to ``length`` characters."""
    if not value:
        return ""
    return value[:length]
