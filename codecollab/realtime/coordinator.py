"""
Session coordinator.

Every client request goes through SessionCoordinator.handle(), which runs on
the event loop thread and never awaits. A request is therefore applied
completely (state mutation plus fan-out computation) before the next one is
looked at, which is what gives edits their arrival order.

handle() does no I/O. It returns Delivery records; the transport pushes each
frame to the listed connections.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from codecollab.errors import CollabError, InvalidPayload, RoomNotFound, StaleReference, Unauthorized
from codecollab.models.room import Room, can_edit
from codecollab.protocol.messages import Request, make_event, resp_error
from codecollab.protocol.types import *
from codecollab.realtime.presence_manager import VoiceRoster
from codecollab.realtime.registry import ConnectionRegistry
from codecollab.security.validation import clean_display_name, validate_chat_message

logger = logging.getLogger(__name__)

ROOM_ENDED_MESSAGE = "The host has ended the room"


@dataclass(frozen=True)
class Delivery:

    """One frame and the connections that must receive it."""

    targets: Tuple[str, ...]
    frame: Dict[str, Any]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionCoordinator:

    """Owns the room store and voice rosters; the only code that mutates them."""

    def __init__(self) -> None:
        self.rooms: Dict[str, Room] = {}
        self.voice = VoiceRoster()
        self.registry = ConnectionRegistry()

        self.total_sessions = 0
        self.total_lines_of_code = 0

        Route = Callable[[str, Any], List[Delivery]]
        self._routes: Dict[str, Route] = {
            JOIN_ROOM:       lambda c, r: self.join_room(c, r.room_id, r.language, r.username),
            LEAVE_ROOM:      lambda c, r: self.leave_room(c, r.room_id),
            END_ROOM:        lambda c, r: self.end_room(c, r.room_id),
            CHANGE_LANGUAGE: lambda c, r: self.change_language(c, r.room_id, r.new_language),
            CODE_CHANGE:     lambda c, r: self.edit(c, r.room_id, r.code, r.target_user_id),
            VIEW_USER_CODE:  lambda c, r: self.switch_view(c, r.room_id, r.target_user_id),
            CHAT_MESSAGE:    lambda c, r: self.chat(c, r.room_id, r.message),
            JOIN_VOICE:      lambda c, r: self.join_voice(c, r.room_id, r.username),
            LEAVE_VOICE:     lambda c, r: self.leave_voice(c, r.room_id),
            VOICE_OFFER:     lambda c, r: self.relay_signal(c, VOICE_OFFER, r.target, r.payload),
            VOICE_ANSWER:    lambda c, r: self.relay_signal(c, VOICE_ANSWER, r.target, r.payload),
            ICE_CANDIDATE:   lambda c, r: self.relay_signal(c, ICE_CANDIDATE, r.target, r.payload),
            GET_STATS:       lambda c, r: self.get_stats(c),
            PING:            lambda c, r: self.ping(c),
        }

    # ---- entry point ----------------------------------------------------------

    def handle(self, conn_id: str, type_: str, request: Request, req_id: str = "") -> List[Delivery]:
        """Apply one validated request and return what must be delivered."""
        route = self._routes.get(type_)
        if route is None:
            return [self._error(conn_id, req_id, ERR_UNKNOWN_TYPE, str(type_))]
        if not self.registry.is_live(conn_id):
            logger.debug(f"Ignoring {type_} from unknown connection {conn_id}")
            return []
        try:
            return route(conn_id, request)
        except RoomNotFound as e:
            logger.info(f"Connection {conn_id} asked for missing room {e.room_id}")
            return [self._error(conn_id, req_id, ERR_ROOM_NOT_FOUND, "Room not found")]
        except (Unauthorized, StaleReference) as e:
            logger.debug(f"Dropped {type_} from {conn_id}: {e!r}")
            return []
        except CollabError as e:
            logger.warning(f"Rejected {type_} from {conn_id}: {e}")
            return [self._error(conn_id, req_id, ERR_BAD_PAYLOAD, str(e))]

    def connect(self, conn_id: str) -> List[Delivery]:
        self.registry.register(conn_id)
        logger.info(f"Connection {conn_id} registered")
        return [self._one(conn_id, CONNECTION_ESTABLISHED, {"userId": conn_id, "timestamp": _now()})]

    def disconnect(self, conn_id: str) -> List[Delivery]:
        """Remove a connection from its room, every view pointer and every voice roster."""
        if not self.registry.is_live(conn_id):
            return []
        out: List[Delivery] = []
        room_id = self.registry.room_of(conn_id)
        room = self.rooms.get(room_id) if room_id else None
        if room is not None and room.has_participant(conn_id):
            out += self._leave(conn_id, room)
        # rooms it already left still hold its buffer and may have viewers on it
        for buffer_room_id in sorted(self.registry.buffer_rooms_of(conn_id)):
            buffer_room = self.rooms.get(buffer_room_id)
            if buffer_room is not None:
                out += self._reset_viewers(conn_id, buffer_room)
        for voice_room in sorted(self.registry.voice_rooms_of(conn_id)):
            out += self._leave_voice(conn_id, voice_room)
        self.registry.unregister(conn_id)
        logger.info(f"Connection {conn_id} unregistered")
        return out

    # ---- room store -----------------------------------------------------------

    def join_room(self, conn_id: str, room_id: str, language: Optional[str], username: Optional[str]) -> List[Delivery]:
        room = self.rooms.get(room_id)
        if room is None and not language:
            raise RoomNotFound(room_id)

        out: List[Delivery] = []
        current_id = self.registry.room_of(conn_id)
        if current_id is not None and current_id != room_id and current_id in self.rooms:
            out += self._leave(conn_id, self.rooms[current_id])

        name = clean_display_name(username)
        self.registry.set_name(conn_id, name)

        if room is None:
            room = Room.create(room_id, language, conn_id)
            self.rooms[room_id] = room
            logger.info(f"Room {room_id} created by {conn_id} ({language})")

        rejoin = room.has_participant(conn_id)
        room.add_participant(conn_id, name)
        self.registry.set_room(conn_id, room_id)
        self.registry.add_buffer_room(conn_id, room_id)
        if not rejoin:
            self.total_sessions += 1
            logger.info(f"{name} ({conn_id}) joined room {room_id}")

        participants = room.participant_list()
        out.append(self._one(conn_id, ROOM_STATE, {
            "roomId": room_id,
            "language": room.language,
            "code": room.code_of(conn_id),
            "participants": participants,
            "isHost": room.is_host(conn_id),
            "viewingUserId": room.viewing(conn_id),
        }))
        self._emit(out, self._others(room, conn_id), USER_JOINED, {
            "userId": conn_id,
            "username": name,
            "participants": participants,
        })
        if not rejoin:
            out += self._stats_deliveries()
        return out

    def leave_room(self, conn_id: str, room_id: str) -> List[Delivery]:
        room = self._member_room(conn_id, room_id)
        return self._leave(conn_id, room)

    def end_room(self, conn_id: str, room_id: str) -> List[Delivery]:
        room = self._member_room(conn_id, room_id)
        if not room.is_host(conn_id):
            raise Unauthorized(f"{conn_id} is not host of {room_id}")

        members = room.member_ids()
        # voice-only members (left the room, stayed in the call) hear about it too
        voice_only = [cid for cid in self.voice.member_ids(room_id) if cid not in room.participants]
        out: List[Delivery] = []
        self._emit(out, members + voice_only, ROOM_ENDED, {"roomId": room_id, "message": ROOM_ENDED_MESSAGE})
        for member in members:
            self.registry.clear_room(member, room_id)
        for voice_member in self.voice.drop_room(room_id):
            self.registry.remove_voice_room(voice_member, room_id)
        self._drop_room(room)
        logger.info(f"Room {room_id} ended by host {conn_id} ({len(members)} participants detached)")
        out += self._stats_deliveries()
        return out

    def change_language(self, conn_id: str, room_id: str, new_language: str) -> List[Delivery]:
        room = self._member_room(conn_id, room_id)
        if not room.is_host(conn_id):
            raise Unauthorized(f"{conn_id} is not host of {room_id}")
        room.language = new_language
        out: List[Delivery] = []
        self._emit(out, room.member_ids(), LANGUAGE_CHANGED, {"language": new_language})
        return out

    # ---- code sync ------------------------------------------------------------

    def edit(self, conn_id: str, room_id: str, code: str, target_id: Optional[str] = None) -> List[Delivery]:
        room = self._member_room(conn_id, room_id)
        explicit = target_id is not None
        target = target_id if explicit else conn_id
        if not can_edit(room, conn_id, target, explicit=explicit):
            raise Unauthorized(f"{conn_id} may not edit buffer {target} in {room_id}")

        room.write(target, code)
        self.total_lines_of_code += code.count("\n") + 1

        out: List[Delivery] = []
        self._emit(out, room.viewers_of(target), CODE_UPDATE, {"ownerId": target, "code": code})
        return out

    def switch_view(self, conn_id: str, room_id: str, target_id: str) -> List[Delivery]:
        room = self._member_room(conn_id, room_id)
        if not room.has_buffer(target_id):
            raise StaleReference(f"no buffer for {target_id} in {room_id}")

        room.switch_view(conn_id, target_id)
        out = [self._one(conn_id, CODE_UPDATE, {"ownerId": target_id, "code": room.code_of(target_id)})]
        self._emit(out, self._others(room, conn_id), VIEW_STATE_CHANGED, {
            "userId": conn_id,
            "viewingUserId": target_id,
        })
        return out

    # ---- chat -----------------------------------------------------------------

    def chat(self, conn_id: str, room_id: str, message: str) -> List[Delivery]:
        room = self._member_room(conn_id, room_id)
        result = validate_chat_message(message)
        if not result["is_valid"]:
            raise InvalidPayload(", ".join(result["errors"]))

        out: List[Delivery] = []
        self._emit(out, self._others(room, conn_id), RECEIVE_MESSAGE, {
            "message": result["sanitized_content"],
            "sender": conn_id,
            "username": room.participants[conn_id],
            "timestamp": _now(),
        })
        return out

    # ---- voice ----------------------------------------------------------------

    def join_voice(self, conn_id: str, room_id: str, username: Optional[str] = None) -> List[Delivery]:
        room = self.rooms.get(room_id)
        if room is None:
            raise StaleReference(f"room {room_id} does not exist")

        name = room.participants.get(conn_id) or clean_display_name(username or self.registry.name_of(conn_id))
        already_present = [cid for cid in self.voice.member_ids(room_id) if cid != conn_id]
        self.voice.join(room_id, conn_id, name)
        self.registry.add_voice_room(conn_id, room_id)

        out = [self._one(conn_id, VOICE_PARTICIPANTS, {"participants": self.voice.participants(room_id)})]
        self._emit(out, self._others(room, conn_id), VOICE_PARTICIPANT_JOINED, {
            "userId": conn_id,
            "username": name,
        })
        # each existing peer dials the newcomer, building a full mesh pairwise
        self._emit(out, already_present, USER_JOINED_VOICE, {"userId": conn_id, "username": name})
        return out

    def leave_voice(self, conn_id: str, room_id: str) -> List[Delivery]:
        if not self.voice.contains(room_id, conn_id):
            raise StaleReference(f"{conn_id} is not in voice for {room_id}")
        return self._leave_voice(conn_id, room_id)

    def relay_signal(self, conn_id: str, kind: str, target_id: str, payload: Any) -> List[Delivery]:
        if kind not in SIGNAL_KINDS:
            raise CollabError(f"unknown signal kind {kind}")
        if not self.registry.is_live(target_id):
            raise StaleReference(f"signal target {target_id} is not connected")
        return [self._one(target_id, kind, {"payload": payload, "senderId": conn_id})]

    # ---- stats / keepalive ----------------------------------------------------

    def stats(self) -> Dict[str, int]:
        return {
            "activeUsers": sum(len(room.participants) for room in self.rooms.values()),
            "totalSessions": self.total_sessions,
            "totalLinesOfCode": self.total_lines_of_code,
        }

    def get_stats(self, conn_id: str) -> List[Delivery]:
        self.registry.subscribe_stats(conn_id)
        return [self._one(conn_id, STATS_UPDATE, self.stats())]

    def ping(self, conn_id: str) -> List[Delivery]:
        return [self._one(conn_id, PONG, {"timestamp": _now()})]

    # ---- internals ------------------------------------------------------------

    def _member_room(self, conn_id: str, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None or not room.has_participant(conn_id):
            raise StaleReference(f"{conn_id} is not a member of {room_id}")
        return room

    def _leave(self, conn_id: str, room: Room) -> List[Delivery]:
        was_host = room.is_host(conn_id)
        name = room.remove_participant(conn_id)
        self.registry.clear_room(conn_id, room.room_id)
        logger.info(f"{name} ({conn_id}) left room {room.room_id}")

        out: List[Delivery] = []
        if room.is_empty():
            self._drop_room(room)
            logger.info(f"Room {room.room_id} closed (no participants left)")
        else:
            self._emit(out, room.member_ids(), USER_LEFT, {
                "userId": conn_id,
                "username": name,
                "participants": room.participant_list(),
            })
            if was_host:
                logger.info(f"Host of room {room.room_id} passed to {room.host_id}")
                self._emit(out, room.member_ids(), HOST_CHANGED, {"hostId": room.host_id})
        out += self._stats_deliveries()
        return out

    def _reset_viewers(self, owner_id: str, room: Room) -> List[Delivery]:
        """Send everyone still watching owner_id back to their own buffer."""
        return [
            self._one(viewer, CODE_UPDATE, {"ownerId": viewer, "code": room.code_of(viewer)})
            for viewer in room.reset_viewers_of(owner_id)
        ]

    def _drop_room(self, room: Room) -> None:
        for owner in room.buffers:
            self.registry.remove_buffer_room(owner, room.room_id)
        del self.rooms[room.room_id]

    def _leave_voice(self, conn_id: str, room_id: str) -> List[Delivery]:
        self.voice.leave(room_id, conn_id)
        self.registry.remove_voice_room(conn_id, room_id)
        out: List[Delivery] = []
        room = self.rooms.get(room_id)
        if room is not None:
            self._emit(out, self._others(room, conn_id), VOICE_PARTICIPANT_LEFT, {
                "userId": conn_id,
                "participants": self.voice.participants(room_id),
            })
        return out

    def _stats_deliveries(self) -> List[Delivery]:
        out: List[Delivery] = []
        self._emit(out, self.registry.stats_subscribers(), STATS_UPDATE, self.stats())
        return out

    @staticmethod
    def _others(room: Room, conn_id: str) -> List[str]:
        return [pid for pid in room.member_ids() if pid != conn_id]

    @staticmethod
    def _one(conn_id: str, type_: str, payload: Dict[str, Any]) -> Delivery:
        return Delivery((conn_id,), make_event(type_, payload))

    @staticmethod
    def _emit(out: List[Delivery], targets: Iterable[str], type_: str, payload: Dict[str, Any]) -> None:
        targets = tuple(targets)
        if targets:
            out.append(Delivery(targets, make_event(type_, payload)))

    @staticmethod
    def _error(conn_id: str, req_id: str, code: str, message: str) -> Delivery:
        return Delivery((conn_id,), resp_error(req_id, code, message))


# Global coordinator instance
coordinator = SessionCoordinator()
