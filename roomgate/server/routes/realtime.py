"""
MODULE OVERVIEW:
The realtime websocket route.

WHAT IS HAPPENING HERE:
Upgrades the HTTP request to a stateful WebSocket connection once the gateway
has accepted the handshake, then reads frames one at a time. Because a single
task reads each socket, a client's events are applied in the order it sent
them. Whatever way the loop ends, the connection is taken out of its rooms.
"""
from fastapi import WebSocket
from loguru import logger

from roomgate.server.gateway import RealtimeGateway


async def realtime_endpoint(websocket: WebSocket):
    gateway: RealtimeGateway = websocket.app.state.gateway
    record = await gateway.handshake(websocket)
    if record is None:
        return
    cid = record.connection_id

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            logger.debug(f"connection_id={cid} sent: {text}")
            await gateway.handle_frame(cid, text)
            if cid not in gateway.sockets:
                # dropped by a failed broadcast
                break
    finally:
        gateway.disconnect(cid)
