from .coordinator import SessionCoordinator, Delivery
from .connection_manager import ConnectionManager
from .presence_manager import VoiceRoster
from .registry import ConnectionRegistry

__all__ = [
    "SessionCoordinator",
    "Delivery",
    "ConnectionManager",
    "VoiceRoster",
    "ConnectionRegistry",
]
