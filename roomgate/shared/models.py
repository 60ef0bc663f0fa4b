"""
MODULE OVERVIEW:
The typed data structures exchanged over HTTP and over the realtime channel,
powered by Pydantic v2.

WHAT IS HAPPENING HERE:
Every HTTP outcome is wrapped in `Envelope`. Every websocket text frame, in
both directions, is `{"event": ..., "data": ...}`; incoming frames are parsed
into `ClientFrame` and their `data` into the model matching the event, so a
client cannot smuggle an unexpected shape into a broadcast.
"""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ClientEvent = Literal["joinRoom", "leaveRoom", "message", "online"]
ServerEvent = Literal["message", "update"]


class Envelope(BaseModel):
    error: bool
    response: Any = None


class FileRef(BaseModel):
    url: str
    desc: str


class ChatMessage(BaseModel):
    message: str
    files: list[FileRef] | None = None


class RoomMessage(ChatMessage):
    to: str = Field(min_length=1)


class ClientFrame(BaseModel):
    event: ClientEvent
    data: Any = None


class ServerFrame(BaseModel):
    event: ServerEvent
    data: Any = None


class ConnectionRecord(BaseModel):
    connection_id: str
    identity_id: str | None
    claims: dict[str, Any]
    rooms: set[str] = Field(default_factory=set)
    online: bool = False
    connected_at: datetime
    disconnected_at: datetime | None = None


class RosterEntry(BaseModel):
    uid: str
    fullname: str = ""
    short_name: str = ""
    online: bool = False


class GatewayStats(BaseModel):
    live_connections: int
    known_records: int
    rooms: dict[str, int]
    online_users: int
    server_time: datetime
