"""
MODULE OVERVIEW:
The realtime gateway: connection lifecycle, room membership, online status and
room broadcast for the websocket channel.

WHAT IS HAPPENING HERE:
This object holds a reference to every live WebSocket, keyed by a connection
id we generate at handshake. Next to it sit three tables:

    records      connection id -> ConnectionRecord (kept after disconnect)
    roster       identity id   -> RosterEntry (the user directory + online flag)
    hub          room          -> connection ids (see rooms.py)

Every lookup is a dict hit; nothing scans a list to find a user.

A connection is only ever promoted to CONNECTED after its Origin and its
session cookie have been checked. Refused handshakes are closed before
`accept()`, so they never get a record and never reach the event loop.

All mutation happens on the single event loop, so no locks are needed.
"""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import uuid4

from fastapi import WebSocket, status
from fastapi.encoders import jsonable_encoder
from loguru import logger
from pydantic import ValidationError as ModelValidationError

from roomgate.server.rooms import RoomHub
from roomgate.shared.config import GatewayConfig
from roomgate.shared.errors import AuthError
from roomgate.shared.identity import Identity, IdentityValidator
from roomgate.shared.models import (
    ChatMessage,
    ClientFrame,
    ConnectionRecord,
    FileRef,
    GatewayStats,
    RoomMessage,
    RosterEntry,
    ServerEvent,
    ServerFrame,
)


class RealtimeGateway:
    def __init__(self, config: GatewayConfig, identity: IdentityValidator):
        self.config = config
        self.identity = identity
        self.hub = RoomHub()
        self.sockets: dict[str, WebSocket] = {}
        self.records: dict[str, ConnectionRecord] = {}
        self.roster: dict[str, RosterEntry] = {}
        # identity id -> live connection ids, so one user can have several tabs open
        self._live_by_identity: dict[str, set[str]] = defaultdict(set)

    # ==========================
    # HANDSHAKE / LIFECYCLE
    # ==========================
    async def handshake(self, websocket: WebSocket) -> ConnectionRecord | None:
        """Authenticate an upgrade request. Returns None when it was refused."""
        origin = websocket.headers.get("origin")
        if origin not in self.config.allowed_origins:
            logger.info(f"origin={origin} protocol=websocket event=refused reason=origin_not_allowed")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None
        try:
            identity = self.identity.authenticate(websocket.headers.get("cookie"), websocket.state)
        except AuthError as e:
            logger.info(f"origin={origin} protocol=websocket event=refused reason=unauthorized detail='{e}'")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None
        await websocket.accept()
        return self.connect(websocket, identity)

    def connect(self, websocket: WebSocket, identity: Identity) -> ConnectionRecord:
        connection_id = uuid4().hex
        record = ConnectionRecord(
            connection_id=connection_id,
            identity_id=identity.id,
            claims=dict(identity.claims),
            connected_at=datetime.now(timezone.utc),
        )
        self.sockets[connection_id] = websocket
        self.records[connection_id] = record
        if identity.id is not None:
            self._live_by_identity[identity.id].add(connection_id)
        self.join_room(connection_id, self.config.default_room)
        logger.info(f"connection_id={connection_id} identity={identity.id} protocol=websocket event=connect reason=accepted")
        return record

    def disconnect(self, connection_id: str) -> None:
        if self.sockets.pop(connection_id, None) is None:
            return
        self.hub.discard(connection_id)
        record = self.records.get(connection_id)
        if record is not None:
            record.online = False
            record.rooms.clear()
            record.disconnected_at = datetime.now(timezone.utc)
            self._forget_live(record.identity_id, connection_id)
        logger.info(f"connection_id={connection_id} protocol=websocket event=disconnect reason=cleanup")

    def remove_record(self, connection_id: str) -> ConnectionRecord | None:
        """Drop a disconnected connection's record. Live connections are kept."""
        if connection_id in self.sockets:
            return None
        return self.records.pop(connection_id, None)

    def _forget_live(self, identity_id: str | None, connection_id: str) -> None:
        if identity_id is None:
            return
        live = self._live_by_identity.get(identity_id)
        if live is None:
            return
        live.discard(connection_id)
        if not live:
            del self._live_by_identity[identity_id]
        entry = self.roster.get(identity_id)
        if entry is not None:
            # online only while another live tab has announced itself
            entry.online = any(self.records[c].online for c in live)

    # ==========================
    # ROOMS / ROSTER
    # ==========================
    def join_room(self, connection_id: str, room: str) -> None:
        self.hub.join(room, connection_id)
        self.records[connection_id].rooms.add(room)
        logger.debug(f"connection_id={connection_id} room={room} event=join")

    def leave_room(self, connection_id: str, room: str) -> None:
        self.hub.leave(room, connection_id)
        self.records[connection_id].rooms.discard(room)
        logger.debug(f"connection_id={connection_id} room={room} event=leave")

    def mark_online(self, connection_id: str) -> None:
        record = self.records.get(connection_id)
        if record is None:
            logger.warning(f"connection_id={connection_id} event=online reason=unknown_connection")
            return
        record.online = True
        if record.identity_id is None:
            return
        entry = self.roster.get(record.identity_id)
        if entry is None:
            # Not in the directory we were given: add it from the token claims
            entry = RosterEntry(
                uid=record.identity_id,
                fullname=str(record.claims.get("fullname", "")),
                short_name=str(record.claims.get("shortName", "")),
            )
            self.roster[entry.uid] = entry
            logger.info(f"identity={entry.uid} event=roster_added reason=unknown_identity")
        entry.online = True

    def set_users(self, users: Iterable[RosterEntry]) -> None:
        """Replace the user directory. Users with a live, online connection stay online."""
        self.roster = {user.uid: user for user in users}
        for uid, connection_ids in self._live_by_identity.items():
            entry = self.roster.get(uid)
            if entry is not None and any(self.records[c].online for c in connection_ids):
                entry.online = True

    def users(self) -> list[RosterEntry]:
        return list(self.roster.values())

    # ==========================
    # INBOUND EVENTS
    # ==========================
    async def handle_frame(self, connection_id: str, text: str) -> None:
        """Apply one client frame. Bad frames are logged and dropped."""
        if connection_id not in self.sockets:
            logger.debug(f"connection_id={connection_id} event=frame_after_disconnect")
            return
        try:
            frame = ClientFrame.model_validate_json(text)
            if frame.event in ("joinRoom", "leaveRoom"):
                room = _room_name(frame.data)
                if frame.event == "joinRoom":
                    self.join_room(connection_id, room)
                else:
                    self.leave_room(connection_id, room)
            elif frame.event == "online":
                self.mark_online(connection_id)
            elif frame.event == "message":
                payload = RoomMessage.model_validate(frame.data)
                await self.send_message_to_room(payload.to, payload.message, payload.files)
        except (ModelValidationError, ValueError) as e:
            logger.warning(f"connection_id={connection_id} event=bad_frame reason='{e}'")

    # ==========================
    # OUTBOUND FAN-OUT
    # ==========================
    async def emit(self, room: str, event: ServerEvent, data: Any) -> int:
        """Send `event` to every member of `room`. Returns how many sockets got it."""
        serialized = ServerFrame(event=event, data=jsonable_encoder(data)).model_dump_json()
        delivered = 0
        disconnected = []
        for connection_id in self.hub.members(room):
            websocket = self.sockets.get(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.send_text(serialized)
                delivered += 1
            except Exception as e:
                logger.warning(f"connection_id={connection_id} protocol=websocket event=error reason='{e}'")
                disconnected.append(connection_id)

        for connection_id in disconnected:
            self.disconnect(connection_id)
        return delivered

    async def send_message_to_room(self, room: str, message: str, files: list[FileRef] | None = None) -> int:
        chat = ChatMessage(message=message, files=files)
        return await self.emit(room, "message", chat.model_dump(mode="json", exclude_none=True))

    async def send_update_event(self, payload: Any) -> int:
        """Notify every connected client (the default room) of an out-of-band change."""
        return await self.emit(self.config.default_room, "update", payload)

    async def close_all(self) -> None:
        for connection_id, websocket in list(self.sockets.items()):
            try:
                await websocket.close(code=status.WS_1001_GOING_AWAY)
            except Exception as e:
                logger.debug(f"connection_id={connection_id} event=close_failed reason='{e}'")
            self.disconnect(connection_id)

    def get_stats(self) -> GatewayStats:
        return GatewayStats(
            live_connections=len(self.sockets),
            known_records=len(self.records),
            rooms=self.hub.sizes(),
            online_users=sum(1 for entry in self.roster.values() if entry.online),
            server_time=datetime.now(timezone.utc),
        )


def _room_name(data: Any) -> str:
    if not isinstance(data, str) or not data:
        raise ValueError(f"room name must be a non-empty string, got {data!r}")
    return data
