from __future__ import annotations


class CollabError(Exception):
    """Base class for request-scoped failures inside the session core."""


class RoomNotFound(CollabError):
    """Join without a language on a room that does not exist."""

    def __init__(self, room_id: str):
        super().__init__(f"Room not found: {room_id}")
        self.room_id = room_id


class Unauthorized(CollabError):
    """Non-host tried a host-only action, or edited a buffer it is not viewing."""


class StaleReference(CollabError):
    """Request names a room, participant or voice entry that no longer exists."""


class ExecutionTimeout(CollabError):
    """A compile or run step of submitted code exceeded its time budget."""


class InvalidPayload(CollabError):
    """Request passed schema validation but its content was rejected."""
