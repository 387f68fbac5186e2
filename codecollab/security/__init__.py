from .validation import validate_chat_message, sanitize_input, clean_display_name

__all__ = [
    "validate_chat_message",
    "sanitize_input",
    "clean_display_name",
]
