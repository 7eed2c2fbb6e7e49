"""Security utilities for log sanitization and secret masking.

This module provides functions to prevent security vulnerabilities:
- Log injection: Sanitize user input before logging
- Sensitive data exposure: Mask secrets in logged or exposed configuration
"""

import re
from typing import Union, Optional

_CONTROL_CHARACTERS_RE = re.compile(r"[\n\r\t\x00-\x1f\x7f-\x9f]")


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Prevents log injection where container names, tags or provider responses
    carry newlines or control characters that would forge log lines.

    Args:
        msg: Message to sanitize (will be converted to string)

    Returns:
        Sanitized message with control characters removed

    Examples:
        >>> sanitize_log_message("Container\\nmalicious\\nlog")
        'Containermaliciouslog'
    """
    if msg is None:
        return ""
    return _CONTROL_CHARACTERS_RE.sub("", str(msg))


def mask(value: Optional[str], visible_chars: int = 1, mask_char: str = "*") -> Optional[str]:
    """Mask a secret, keeping only its first and last characters.

    Args:
        value: Secret to mask (token, password, webhook URL...)
        visible_chars: Characters kept visible at each end (default: 1)
        mask_char: Character used for masking

    Returns:
        Masked value of the same length, or None for an empty value

    Examples:
        >>> mask("token")
        't***n'
        >>> mask("a")
        '*'
    """
    if not value:
        return None
    value = str(value)
    if len(value) < 2 * visible_chars:
        return mask_char * len(value)
    hidden = max(0, len(value) - visible_chars * 2)
    return f"{value[:visible_chars]}{mask_char * hidden}{value[len(value) - visible_chars:]}"
