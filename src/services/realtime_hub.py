"""Process-local realtime fan-out: connection registry and rooms.

Transport-agnostic: a connection is anything with an ``id``, a ``user_id``
and an async ``send(event, data)``. The WebSocket endpoint adapts Starlette
sockets to this interface.

Rooms:
    user:{id}          personal room, every connection of one user
    squad:{id}         members of a squad
    community:{id}     members of a community
    conversation:{id}  participants viewing a conversation
"""

import logging
from collections import defaultdict
from typing import Any, Protocol


logger = logging.getLogger(__name__)


class ConnectionClosedError(Exception):
    """Raised by a connection whose peer has gone away."""


class Connection(Protocol):
    id: str
    user_id: str

    async def send(self, event: str, data: dict[str, Any]) -> None: ...


class ConnectionRegistry(Protocol):
    """Tracks which connections each user has open."""

    def add_connection(self, user_id: str, connection_id: str) -> bool:
        """Register a connection; True if the user just went from zero to one."""
        ...

    def remove_connection(self, user_id: str, connection_id: str) -> bool:
        """Unregister a connection; True if the user just went from one to zero."""
        ...

    def is_online(self, user_id: str) -> bool: ...

    def connections_for(self, user_id: str) -> set[str]: ...


class InMemoryConnectionRegistry:
    """Single-process registry. Multi-process deployments need a shared one."""

    def __init__(self) -> None:
        self._connections: dict[str, set[str]] = defaultdict(set)

    def add_connection(self, user_id: str, connection_id: str) -> bool:
        connections = self._connections[user_id]
        was_offline = not connections
        connections.add(connection_id)
        return was_offline

    def remove_connection(self, user_id: str, connection_id: str) -> bool:
        connections = self._connections.get(user_id)
        if not connections or connection_id not in connections:
            return False
        connections.discard(connection_id)
        if connections:
            return False
        del self._connections[user_id]
        return True

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connections_for(self, user_id: str) -> set[str]:
        return set(self._connections.get(user_id, ()))


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class RealtimeHub:
    """Rooms of live connections plus the registry deciding online/offline."""

    def __init__(self, registry: ConnectionRegistry | None = None) -> None:
        self.registry: ConnectionRegistry = registry or InMemoryConnectionRegistry()
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = defaultdict(set)
        self._memberships: dict[str, set[str]] = defaultdict(set)

    def register(self, connection: Connection) -> bool:
        """Track a connection; True if its user just came online."""
        self._connections[connection.id] = connection
        return self.registry.add_connection(connection.user_id, connection.id)

    def unregister(self, connection: Connection) -> bool:
        """Forget a connection and its rooms; True if its user just went offline."""
        for room in self._memberships.pop(connection.id, set()):
            self._discard_from_room(room, connection.id)
        self._connections.pop(connection.id, None)
        return self.registry.remove_connection(connection.user_id, connection.id)

    def join(self, connection_id: str, room: str) -> None:
        self._rooms[room].add(connection_id)
        self._memberships[connection_id].add(room)

    def leave(self, connection_id: str, room: str) -> None:
        self._discard_from_room(room, connection_id)
        self._memberships[connection_id].discard(room)

    def _discard_from_room(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]

    def rooms_of(self, connection_id: str) -> set[str]:
        return set(self._memberships.get(connection_id, ()))

    def room_members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    async def emit_to_room(self, room: str, event: str, data: dict[str, Any], *, skip: str | None = None) -> int:
        """Send an event to every connection in a room except ``skip``; returns deliveries."""
        delivered = 0
        for connection_id in self.room_members(room):
            if connection_id == skip:
                continue
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            try:
                await connection.send(event, data)
                delivered += 1
            except ConnectionClosedError:
                logger.debug("Dropped event for closed connection", extra={"connection_id": connection_id})
        return delivered

    async def emit_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> int:
        return await self.emit_to_room(user_room(user_id), event, data)


# Global hub instance
hub = RealtimeHub()
