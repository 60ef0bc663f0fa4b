"""
MODULE OVERVIEW:
Topic based multicast: which connection ids belong to which room.

WHAT IS HAPPENING HERE:
This is pure bookkeeping with no sockets in it. The gateway asks it "who is in
room X?" and does the sending itself. Empty rooms are dropped so the table
only ever holds rooms somebody is actually in. In a multi-node deployment
this is the piece you would back with Redis Pub/Sub.
"""
from collections import defaultdict


class RoomHub:
    def __init__(self):
        self._members: dict[str, set[str]] = defaultdict(set)

    def join(self, room: str, connection_id: str) -> None:
        self._members[room].add(connection_id)

    def leave(self, room: str, connection_id: str) -> None:
        members = self._members.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._members[room]

    def discard(self, connection_id: str) -> None:
        """Remove a connection from every room it is in."""
        for room in [r for r, members in self._members.items() if connection_id in members]:
            self.leave(room, connection_id)

    def members(self, room: str) -> frozenset[str]:
        return frozenset(self._members.get(room, ()))

    def sizes(self) -> dict[str, int]:
        return {room: len(members) for room, members in self._members.items()}
