import re
import html
from typing import Dict, Any, Optional
from codecollab.config import settings

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')

def validate_chat_message(content: str) -> Dict[str, Any]:
    """Validate a chat message and return validation result"""
    errors = []

    # Check message length
    if len(content) > settings.MAX_MESSAGE_LENGTH:
        errors.append(f"Message too long. Maximum {settings.MAX_MESSAGE_LENGTH} characters allowed.")

    # Check for empty content
    if not content.strip():
        errors.append("Message content cannot be empty.")

    return {
        "is_valid": len(errors) == 0,
        "errors": errors,
        "sanitized_content": sanitize_input(content)
    }

def sanitize_input(text: str) -> str:
    """Escape markup and normalize whitespace in user supplied text"""
    if not text:
        return text

    # HTML escape
    sanitized = html.escape(text)

    # Normalize whitespace
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()

    return sanitized

def clean_display_name(name: Optional[str]) -> str:
    """Display names are free text; strip control characters and fall back to a placeholder"""
    if not name:
        return "Anonymous"
    cleaned = _CONTROL_CHARS.sub('', name).strip()[:settings.MAX_NAME_LENGTH]
    return cleaned or "Anonymous"
