import re


def redact_pii(text: str) -> str:
    """
    Redact potential Personally Identifiable Information (PII) from text.

    Chat messages end up in log lines as previews, so this function redacts
    common PII patterns including:
    - Email addresses
    - IP addresses
    - API keys and bearer tokens
    - Phone numbers
    - Long numeric sequences
    """
    # Bearer tokens in pasted headers
    text = re.sub(r"(?i)bearer\s+[a-z0-9._\-]+", "Bearer [TOKEN]", text)

    # Email addresses
    text = re.sub(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "[EMAIL]", text)

    # IP addresses
    text = re.sub(r"\b(?:\d{1,3}\.){3}\d{1,3}\b", "[IP]", text)

    # Alphanumeric strings that look like API keys or passwords
    text = re.sub(r"\b[a-zA-Z0-9]{32,}\b", "[KEY]", text)

    # Phone numbers in various formats
    text = re.sub(
        r"\b(?:\+\d{1,3}[-. ]?)?\(?\d{3}\)?[-. ]?\d{3}[-. ]?\d{4}\b", "[PHONE]", text
    )

    # Long numeric sequences that might be card or account numbers
    text = re.sub(r"\b\d{8,}\b", "[NUMBER]", text)

    return text


def preview_text(text: str, limit: int = 30) -> str:
    """Short, redacted excerpt of message text for log lines."""
    if not text:
        return ""
    # Redact before truncating so a cut never exposes half of a match
    flattened = redact_pii(" ".join(text.split()))
    if len(flattened) > limit:
        return flattened[:limit] + "..."
    return flattened
