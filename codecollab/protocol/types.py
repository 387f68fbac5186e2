# codecollab/protocol/types.py
from __future__ import annotations

# ---- Message types (client -> server) ----
JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"
END_ROOM = "end-room"
CHANGE_LANGUAGE = "change-language"
CODE_CHANGE = "code-change"
VIEW_USER_CODE = "view-user-code"
CHAT_MESSAGE = "chat-message"
JOIN_VOICE = "join-voice"
LEAVE_VOICE = "leave-voice"
VOICE_OFFER = "voice-offer"
VOICE_ANSWER = "voice-answer"
ICE_CANDIDATE = "ice-candidate"
GET_STATS = "get-stats"
PING = "ping"

SIGNAL_KINDS = (VOICE_OFFER, VOICE_ANSWER, ICE_CANDIDATE)

# ---- Message types (server -> client) ----
CONNECTION_ESTABLISHED = "connection-established"
ROOM_STATE = "room-state"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
HOST_CHANGED = "host-changed"
ROOM_ENDED = "room-ended"
LANGUAGE_CHANGED = "language-changed"
CODE_UPDATE = "code-update"
VIEW_STATE_CHANGED = "view-state-changed"
RECEIVE_MESSAGE = "receive-message"
VOICE_PARTICIPANTS = "voice-participants"
VOICE_PARTICIPANT_JOINED = "voice-participant-joined"
VOICE_PARTICIPANT_LEFT = "voice-participant-left"
USER_JOINED_VOICE = "user-joined-voice"
STATS_UPDATE = "stats-update"
PONG = "pong"
ERROR = "ERROR"

# ---- Common error codes ----
ERR_BAD_JSON = "BAD_JSON"
ERR_BAD_PAYLOAD = "BAD_PAYLOAD"
ERR_UNKNOWN_TYPE = "UNKNOWN_TYPE"
ERR_ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
ERR_RATE_LIMITED = "RATE_LIMITED"
ERR_INTERNAL = "INTERNAL"

# Minimal shape docs (for human readers)
# Request:  { "type": <client type>, "payload": {...}, "req_id"?: "<opaque>" }
# Push:     { "type": <server type>, "payload": {...} }
# Error:    { "req_id": "<same>", "type": "ERROR", "payload": {"code": ..., "message": ...} }
