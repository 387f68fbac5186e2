from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

DEFAULT_CODE = "// Start coding here..."

# Languages whose line comment is not "//"
_HASH_COMMENT_LANGUAGES = {"python", "py", "ruby", "rb"}


def default_code(language: Optional[str]) -> str:
    """Placeholder put in a participant's buffer on first join."""
    if language and language.lower() in _HASH_COMMENT_LANGUAGES:
        return "# Start coding here..."
    return DEFAULT_CODE


@dataclass
class Room:

    """
    One collaborative session.

    participants keeps join order, which decides host succession.
    buffers may hold entries for participants who already left; they are
    dropped together with the room.
    """

    room_id: str
    language: str
    host_id: str
    default_code: str = DEFAULT_CODE
    participants: Dict[str, str] = field(default_factory=dict)   # conn_id -> display name
    buffers: Dict[str, str] = field(default_factory=dict)        # owner conn_id -> code
    view_state: Dict[str, str] = field(default_factory=dict)     # viewer conn_id -> owner conn_id
    created_at: float = field(default_factory=time.time)

    @classmethod
    def create(cls, room_id: str, language: str, host_id: str) -> "Room":
        return cls(room_id=room_id, language=language, host_id=host_id,
                   default_code=default_code(language))

    # ---- membership -----------------------------------------------------------

    def add_participant(self, conn_id: str, name: str) -> None:
        self.participants[conn_id] = name
        self.buffers.setdefault(conn_id, self.default_code)
        self.view_state.setdefault(conn_id, conn_id)

    def remove_participant(self, conn_id: str) -> Optional[str]:
        """Drop a member and its view pointer. Returns its name, or None if absent."""
        name = self.participants.pop(conn_id, None)
        if name is None:
            return None
        self.view_state.pop(conn_id, None)
        if conn_id == self.host_id and self.participants:
            self.host_id = next(iter(self.participants))
        return name

    def has_participant(self, conn_id: str) -> bool:
        return conn_id in self.participants

    def is_host(self, conn_id: str) -> bool:
        return conn_id == self.host_id

    def is_empty(self) -> bool:
        return not self.participants

    def member_ids(self) -> List[str]:
        return list(self.participants)

    def participant_list(self) -> List[dict]:
        return [
            {"id": pid, "name": name, "isHost": pid == self.host_id}
            for pid, name in self.participants.items()
        ]

    # ---- buffers and views ----------------------------------------------------

    def has_buffer(self, owner_id: str) -> bool:
        return owner_id in self.buffers

    def code_of(self, owner_id: str) -> str:
        return self.buffers[owner_id]

    def write(self, owner_id: str, code: str) -> None:
        self.buffers[owner_id] = code

    def viewing(self, conn_id: str) -> Optional[str]:
        return self.view_state.get(conn_id)

    def switch_view(self, conn_id: str, owner_id: str) -> None:
        self.view_state[conn_id] = owner_id

    def viewers_of(self, owner_id: str) -> List[str]:
        return [viewer for viewer, target in self.view_state.items() if target == owner_id]

    def reset_viewers_of(self, owner_id: str) -> List[str]:
        """Point everyone watching owner_id back at their own buffer."""
        reset = [v for v in self.viewers_of(owner_id) if v != owner_id]
        for viewer in reset:
            self.view_state[viewer] = viewer
        return reset


def can_edit(room: Room, caller_id: str, target_id: str, *, explicit: bool = False) -> bool:
    """
    Edit rule: the host may write any buffer it names explicitly; everyone else
    (and the host without an explicit target) may only write the buffer their
    own view currently points at.
    """
    if not room.has_participant(caller_id) or not room.has_buffer(target_id):
        return False
    if explicit and room.is_host(caller_id):
        return True
    return room.viewing(caller_id) == target_id
