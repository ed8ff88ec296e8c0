"""Redaction rules for decoder logs.

Model output and prompts may contain user content, so structured log fields
whose key matches one of these names are replaced with `[REDACTED]`. Log
lengths and counts instead of payloads.
"""

# Keys redacted from structured log entries
SENSITIVE_KEYS: set[str] = {
    # Credentials that may ride along on transport metadata
    "authorization",
    "api_key",
    "token",
    "secret",
    "cookie",
    "x-api-key",
    # Generated or user-supplied text
    "prompt",
    "system",
    "content",
    "fragment",
    "body",
    "raw",
    "text",
}


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be considered sensitive and redacted.

    Args:
        key: The key name to check

    Returns:
        True if the key should be redacted, False otherwise
    """
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
