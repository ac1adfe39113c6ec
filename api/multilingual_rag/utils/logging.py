import re


def redact_pii(text: str) -> str:
    """
    Redact potential Personally Identifiable Information (PII) from text.

    This function redacts common PII patterns including:
    - Email addresses
    - IP addresses
    - UUIDs (session and patient identifiers)
    - API keys and passwords
    - Phone numbers (international and Thai mobile formats)
    - National ID and other long numeric sequences
    """
    # UUIDs
    text = re.sub(
        r"\b[a-fA-F0-9]{8}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{12}\b",
        "[UUID]",
        text,
    )

    # Email addresses
    text = re.sub(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "[EMAIL]", text)

    # IP addresses
    text = re.sub(r"\b(?:\d{1,3}\.){3}\d{1,3}\b", "[IP]", text)

    # Thai mobile numbers (08x-xxx-xxxx, 09x..., 06x...)
    text = re.sub(r"\b0[689]\d[-. ]?\d{3}[-. ]?\d{4}\b", "[PHONE]", text)

    # Phone numbers in various formats
    text = re.sub(
        r"\b(?:\+\d{1,3}[-. ]?)?\(?\d{3}\)?[-. ]?\d{3}[-. ]?\d{4}\b", "[PHONE]", text
    )

    # National IDs and other long numeric sequences
    text = re.sub(r"\b\d{8,}\b", "[ID]", text)

    # Alphanumeric strings that look like API keys or passwords
    text = re.sub(r"\b[a-zA-Z0-9]{32,}\b", "[KEY]", text)

    return text


def truncate_for_log(text: str, max_length: int = 100) -> str:
    """Redact and shorten user text before it goes into a log line."""
    redacted = redact_pii(text or "")
    if len(redacted) <= max_length:
        return redacted
    return redacted[:max_length] + "..."
