"""
MODULE OVERVIEW:
A terminal client for the realtime channel.

WHAT IS HAPPENING HERE:
We use the `websockets` library. The handshake carries the session cookie and
an Origin header, exactly like a browser tab would, otherwise the gateway
refuses the upgrade. After connecting we join the requested rooms, announce
ourselves `online`, and hand every received frame to `on_frame`.
"""

import json
from typing import Any, Awaitable, Callable, Iterable

import websockets
from loguru import logger


class RealtimeClient:
    def __init__(self, server_base_url: str, cookie_name: str, token: str, origin: str, path: str = "/connections"):
        base = server_base_url.rstrip("/").replace("http://", "ws://").replace("https://", "wss://")
        self.ws_url = f"{base}{path}"
        self.headers = {"Cookie": f"{cookie_name}={token}", "Origin": origin}
        self.on_frame: Callable[[str, Any], Awaitable[None]] | None = None

    @staticmethod
    def frame(event: str, data: Any = None) -> str:
        return json.dumps({"event": event, "data": data})

    async def send_message(self, to: str, message: str, files: list[dict] | None = None) -> None:
        payload = {"to": to, "message": message}
        if files:
            payload["files"] = files
        async with websockets.connect(self.ws_url, additional_headers=self.headers) as ws:
            await ws.send(self.frame("message", payload))
        logger.info(f"room={to} event=message_sent")

    async def listen(self, rooms: Iterable[str] = ()) -> None:
        async with websockets.connect(self.ws_url, additional_headers=self.headers) as ws:
            for room in rooms:
                await ws.send(self.frame("joinRoom", room))
            await ws.send(self.frame("online"))

            async for raw in ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"event=bad_frame raw={raw!r}")
                    continue
                if self.on_frame:
                    await self.on_frame(data.get("event", "?"), data.get("data"))
