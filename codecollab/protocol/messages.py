# codecollab/protocol/messages.py
from __future__ import annotations
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from codecollab.config import settings
from .types import *


class Request(BaseModel):
    # Clients send camelCase keys; snake_case is accepted too
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RoomRequest(Request):
    room_id: str = Field(..., alias="roomId", min_length=1, max_length=128)


class JoinRoomRequest(RoomRequest):
    language: Optional[str] = Field(None, max_length=32)
    username: Optional[str] = Field("Anonymous", max_length=settings.MAX_NAME_LENGTH)


class ChangeLanguageRequest(RoomRequest):
    new_language: str = Field(..., alias="newLanguage", min_length=1, max_length=32)


class CodeChangeRequest(RoomRequest):
    code: str = Field(..., max_length=settings.MAX_CODE_LENGTH)
    target_user_id: Optional[str] = Field(None, alias="targetUserId")


class ViewUserCodeRequest(RoomRequest):
    target_user_id: str = Field(..., alias="targetUserId", min_length=1)


class ChatMessageRequest(RoomRequest):
    message: str


class JoinVoiceRequest(RoomRequest):
    username: Optional[str] = Field(None, max_length=settings.MAX_NAME_LENGTH)


class SignalRequest(Request):
    target: str = Field(..., min_length=1)
    payload: Any = None


class EmptyRequest(Request):
    pass


REQUEST_MODELS: Dict[str, Type[Request]] = {
    JOIN_ROOM: JoinRoomRequest,
    LEAVE_ROOM: RoomRequest,
    END_ROOM: RoomRequest,
    CHANGE_LANGUAGE: ChangeLanguageRequest,
    CODE_CHANGE: CodeChangeRequest,
    VIEW_USER_CODE: ViewUserCodeRequest,
    CHAT_MESSAGE: ChatMessageRequest,
    JOIN_VOICE: JoinVoiceRequest,
    LEAVE_VOICE: RoomRequest,
    VOICE_OFFER: SignalRequest,
    VOICE_ANSWER: SignalRequest,
    ICE_CANDIDATE: SignalRequest,
    GET_STATS: EmptyRequest,
    PING: EmptyRequest,
}


def parse_request(type_: str, payload: Dict[str, Any]) -> Request:
    """Validate a raw payload against the model registered for its type.

    Raises KeyError for unknown types and pydantic.ValidationError for bad payloads.
    """
    if not isinstance(type_, str) or type_ not in REQUEST_MODELS:
        raise KeyError(type_)
    return REQUEST_MODELS[type_].model_validate(payload)


# server side frame builders
def make_event(type_: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": type_, "payload": payload}

def resp_error(req_id: str, code: str, message: str) -> Dict[str, Any]:
    return {"req_id": req_id, "type": ERROR, "payload": {"code": code, "message": message}}
