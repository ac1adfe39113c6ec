"""Cache key normalization shared by the translation and search caches.

Both caches match exactly on a normalized form of the input, so texts that
differ only in Unicode composition, case, surrounding or repeated whitespace, common punctuation,
or Thai tone marks share one entry.
"""

import re
import unicodedata

SEARCH_KEY_MAX_LENGTH = 200
TRANSLATION_KEY_MAX_LENGTH = 300

_PUNCTUATION_RE = re.compile(r"[.,!?;:'\"()\[\]{}]")
# Thai tone marks: mai ek, mai tho, mai tri, mai chattawa
_THAI_TONE_MARKS_RE = re.compile(r"[\u0e48-\u0e4b]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: str, max_length: int) -> str:
    """Return the canonical cache form of ``text``.

    Punctuation and tone marks are removed before whitespace is collapsed so
    the result is stable under a second application.
    """
    text = unicodedata.normalize("NFC", text.lower())
    text = _PUNCTUATION_RE.sub("", text)
    text = _THAI_TONE_MARKS_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    # Truncation can leave a trailing space behind
    return text[:max_length].rstrip()


def search_key(query: str) -> str:
    return normalize(query, SEARCH_KEY_MAX_LENGTH)


def translation_key(text: str, source_lang: str, target_lang: str) -> str:
    return f"{source_lang}:{target_lang}:{normalize(text, TRANSLATION_KEY_MAX_LENGTH)}"
