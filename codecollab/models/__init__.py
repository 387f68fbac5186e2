# codecollab/models/__init__.py
from .room import Room, can_edit, default_code, DEFAULT_CODE

__all__ = ["Room", "can_edit", "default_code", "DEFAULT_CODE"]
