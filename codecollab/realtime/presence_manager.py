import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

class VoiceRoster:
    """Tracks who is in each room's voice channel"""

    def __init__(self):
        # {room_id: {conn_id: display_name}}, insertion order = join order
        self.rosters: Dict[str, Dict[str, str]] = {}

    def join(self, room_id: str, conn_id: str, name: str) -> bool:
        """Add a voice participant. Returns False if it was already present."""
        roster = self.rosters.setdefault(room_id, {})
        is_new = conn_id not in roster
        roster[conn_id] = name
        logger.info(f"Voice join in room {room_id}: {conn_id} ({name})")
        return is_new

    def leave(self, room_id: str, conn_id: str) -> bool:
        """Remove a voice participant. Returns False if it was not present."""
        roster = self.rosters.get(room_id)
        if not roster or conn_id not in roster:
            return False
        del roster[conn_id]
        if not roster:
            del self.rosters[room_id]
        logger.info(f"Voice leave in room {room_id}: {conn_id}")
        return True

    def drop_room(self, room_id: str) -> List[str]:
        """Forget a room's voice channel entirely; returns who was in it"""
        return list(self.rosters.pop(room_id, {}))

    def contains(self, room_id: str, conn_id: str) -> bool:
        return conn_id in self.rosters.get(room_id, {})

    def member_ids(self, room_id: str) -> List[str]:
        return list(self.rosters.get(room_id, {}))

    def participants(self, room_id: str) -> List[List[str]]:
        """Roster as [id, name] pairs, the shape clients feed into a Map"""
        return [[cid, name] for cid, name in self.rosters.get(room_id, {}).items()]
