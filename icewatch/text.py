"""
Text helpers shared by the status-page parser and the lake resolver.
"""

import html
import re
import unicodedata

_TAG_RE = re.compile(r'<[^>]+>')
_SCRIPT_RE = re.compile(r'<(script|style)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r'\s+')
_SLUG_RE = re.compile(r'[^a-z0-9]+')


def normalize_text(text: str) -> str:
    """Remove HTML tags, decode entities and collapse whitespace."""
    if not text:
        return ""
    text = _SCRIPT_RE.sub(' ', text)
    text = _TAG_RE.sub(' ', text)
    text = html.unescape(text)
    return _WHITESPACE_RE.sub(' ', text).strip()


def _fold_char(char: str) -> str:
    decomposed = unicodedata.normalize("NFKD", char)
    base = "".join(c for c in decomposed if not unicodedata.combining(c))
    return base if len(base) == 1 else char


def fold_diacritics(text: str) -> str:
    """
    Replace accented letters with their ASCII base ("Ältasjön" -> "Altasjon").

    The result has the same length as the input, so match offsets found in
    the folded text can be used to slice the original.
    """
    return "".join(_fold_char(c) for c in text)


def slugify(name: str) -> str:
    """URL slug for a lake name ("Tyresö-Flaten" -> "tyreso-flaten")."""
    return _SLUG_RE.sub("-", fold_diacritics(name).lower()).strip("-")
