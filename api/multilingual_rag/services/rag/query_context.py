"""Shared utilities for query context analysis.

Used by QueryExpander to decide whether an image query needs conversation
context and to pull the last topic out of recent turns.
"""

import re
from typing import Dict, List, Optional

# Anaphoric pronoun patterns (compiled once)
_ANAPHORIC_RE = re.compile(r"\b(it|that|this|those|these|they|them)\b", re.IGNORECASE)
_DEICTIC_RE = re.compile(
    r"\b(the same|the above|what you said|you mentioned|like that)\b",
    re.IGNORECASE,
)
# Scripts without word boundaries: match the reference words directly
_CJK_THAI_ANAPHORIC_RE = re.compile(
    r"(อันนี้|อันนั้น|นี้|นั้น|แบบนี้|แบบนั้น|เหมือนกัน|"
    r"이거|그거|저거|이것|그것|그런|"
    r"这个|那个|它|这些|那些)"
)

# Short acknowledgments that should be skipped when looking for topic context.
# Matches single acks or common combos like "ok thanks", "yes sure", "got it thanks".
_ACK_WORDS = (
    r"ok|okay|yes|no|sure|thanks|thank you|got it|i see|right|alright|"
    r"cool|great|fine|hmm|ah|oh|yep|nope|k|thx|ty|"
    r"ครับ|ค่ะ|คะ|โอเค|ขอบคุณ|ขอบคุณครับ|ขอบคุณค่ะ|"
    r"네|감사합니다|알겠습니다|好的|谢谢"
)
_ACK_RE = re.compile(
    rf"^({_ACK_WORDS})(\s*[,.]?\s*({_ACK_WORDS}))*\s*[.!?]*$",
    re.IGNORECASE,
)

# Queries shorter than this many characters rarely stand on their own
SHORT_QUERY_CHARS = 12


def is_anaphoric(query: str) -> bool:
    """Check if query contains anaphoric references that need resolution."""
    return bool(
        _ANAPHORIC_RE.search(query)
        or _DEICTIC_RE.search(query)
        or _CJK_THAI_ANAPHORIC_RE.search(query)
    )


def is_ambiguous(query: str, chat_history: Optional[List[Dict[str, str]]]) -> bool:
    """Decide whether a query needs conversation context to be searchable.

    Without history there is nothing to expand with, so the answer is False.
    """
    if not chat_history:
        return False
    stripped = (query or "").strip()
    if not stripped:
        return False
    return is_anaphoric(stripped) or len(stripped) < SHORT_QUERY_CHARS


def _is_substantive(content: str) -> bool:
    """Check if a message is substantive (not just an acknowledgment)."""
    stripped = content.strip()
    if len(stripped) <= 3:
        return False
    if _ACK_RE.match(stripped):
        return False
    return True


def extract_last_topic(
    chat_history: List[Dict[str, str]], max_chars: int = 100
) -> Optional[str]:
    """Extract the topic from the most recent substantive user message.

    Skips acknowledgments ("ok", "ขอบคุณ", "네") and very short messages.
    The current query must NOT be included in chat_history.

    Truncates at a natural sentence boundary under max_chars.
    """
    for msg in reversed(chat_history):
        if msg.get("role") == "user":
            content = msg.get("content", "").strip()
            if _is_substantive(content):
                if len(content) > max_chars:
                    boundary = content[:max_chars].rfind(". ")
                    if boundary > 20:
                        return content[: boundary + 1]
                    return content[:max_chars]
                return content
    return None


def heuristic_expand(
    query: str, chat_history: List[Dict[str, str]]
) -> Optional[str]:
    """Prefix the query with the last conversation topic, if there is one."""
    topic = extract_last_topic(chat_history)
    if not topic or topic == query.strip():
        return None
    return f"Regarding {topic}: {query}"
