from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set


@dataclass
class ConnectionInfo:

    """One live client connection."""

    conn_id: str
    name: str = "Anonymous"
    room_id: Optional[str] = None                          # room it currently belongs to
    voice_rooms: Set[str] = field(default_factory=set)     # rooms whose voice roster lists it
    buffer_rooms: Set[str] = field(default_factory=set)    # rooms still holding a buffer it owns
    stats_subscriber: bool = False
    connected_at: float = field(default_factory=time.time)


class ConnectionRegistry:

    """
    conn_id -> ConnectionInfo, plus reverse indexes from a connection to the
    voice rosters it sits in and the rooms holding its buffer, so disconnect
    cleanup never scans all rooms.
    """

    def __init__(self) -> None:
        self._conns: Dict[str, ConnectionInfo] = {}

    def register(self, conn_id: str) -> ConnectionInfo:
        info = ConnectionInfo(conn_id=conn_id)
        self._conns[conn_id] = info
        return info

    def unregister(self, conn_id: str) -> Optional[ConnectionInfo]:
        return self._conns.pop(conn_id, None)

    def is_live(self, conn_id: str) -> bool:
        return conn_id in self._conns

    def get(self, conn_id: str) -> Optional[ConnectionInfo]:
        return self._conns.get(conn_id)

    def live_ids(self) -> List[str]:
        return list(self._conns)

    def __len__(self) -> int:
        return len(self._conns)

    # ---- identity / room ------------------------------------------------------

    def set_name(self, conn_id: str, name: str) -> None:
        self._conns[conn_id].name = name

    def name_of(self, conn_id: str) -> Optional[str]:
        info = self._conns.get(conn_id)
        return info.name if info else None

    def room_of(self, conn_id: str) -> Optional[str]:
        info = self._conns.get(conn_id)
        return info.room_id if info else None

    def set_room(self, conn_id: str, room_id: str) -> None:
        self._conns[conn_id].room_id = room_id

    def clear_room(self, conn_id: str, room_id: str) -> None:
        info = self._conns.get(conn_id)
        if info and info.room_id == room_id:
            info.room_id = None

    # ---- buffer index ---------------------------------------------------------

    def add_buffer_room(self, conn_id: str, room_id: str) -> None:
        self._conns[conn_id].buffer_rooms.add(room_id)

    def remove_buffer_room(self, conn_id: str, room_id: str) -> None:
        info = self._conns.get(conn_id)
        if info:
            info.buffer_rooms.discard(room_id)

    def buffer_rooms_of(self, conn_id: str) -> Set[str]:
        info = self._conns.get(conn_id)
        return set(info.buffer_rooms) if info else set()

    # ---- voice index ----------------------------------------------------------

    def add_voice_room(self, conn_id: str, room_id: str) -> None:
        self._conns[conn_id].voice_rooms.add(room_id)

    def remove_voice_room(self, conn_id: str, room_id: str) -> None:
        info = self._conns.get(conn_id)
        if info:
            info.voice_rooms.discard(room_id)

    def voice_rooms_of(self, conn_id: str) -> Set[str]:
        info = self._conns.get(conn_id)
        return set(info.voice_rooms) if info else set()

    # ---- stats subscription ---------------------------------------------------

    def subscribe_stats(self, conn_id: str) -> None:
        self._conns[conn_id].stats_subscriber = True

    def stats_subscribers(self) -> List[str]:
        return [cid for cid, info in self._conns.items() if info.stats_subscriber]
