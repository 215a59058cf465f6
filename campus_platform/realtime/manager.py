from typing import Dict, List, Set
import asyncio
import logging

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin-room"
SUPER_ADMIN_ROOM = "super-admin-room"
EXAM_MANAGEMENT_ROOM = "exam-management"
ATTENDANCE_ROOM = "attendance-room"


def user_room(user_id: str) -> str:
    return user_id


def team_room(team_id: str) -> str:
    return f"team-{team_id}"


def mentor_room(mentor_id: str) -> str:
    return f"mentor-{mentor_id}"


def community_room(community_id: str) -> str:
    return f"community-{community_id}"


def milestone_chain_room(chain_id: str) -> str:
    return f"milestone-chain-{chain_id}"


class RoomManager:
    """
    Room-scoped fan-out for state-change notifications.

    Delivery is best effort: a socket that fails a send is dropped from every
    room and the event is not queued for it.
    """
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self.connections: Set[WebSocket] = set()
        self.lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self.lock:
            self.connections.add(websocket)

    async def join(self, websocket: WebSocket, room: str):
        async with self.lock:
            self.rooms.setdefault(room, set()).add(websocket)

    async def leave(self, websocket: WebSocket, room: str):
        async with self.lock:
            self._discard(websocket, room)

    async def disconnect(self, websocket: WebSocket):
        async with self.lock:
            self.connections.discard(websocket)
            for room in list(self.rooms):
                self._discard(websocket, room)

    def _discard(self, websocket: WebSocket, room: str):
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        # Drop empty rooms so the map does not grow with every team/user ever seen
        if not members:
            del self.rooms[room]

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def emit(self, room: str, event: str, payload: dict = None):
        """Push an event to everyone in a room. Never raises."""
        async with self.lock:
            targets = list(self.rooms.get(room, ()))
        await self._deliver(targets, event, payload)

    async def emit_many(self, rooms: List[str], event: str, payload: dict = None):
        async with self.lock:
            targets = set()
            for room in rooms:
                targets |= self.rooms.get(room, set())
        await self._deliver(list(targets), event, payload)

    async def broadcast(self, event: str, payload: dict = None):
        """Push an event to every connected socket"""
        async with self.lock:
            targets = list(self.connections)
        await self._deliver(targets, event, payload)

    async def _deliver(self, targets: List[WebSocket], event: str, payload: dict):
        if not targets:
            return

        try:
            message = {"event": event, "data": jsonable_encoder(payload or {})}
        except (TypeError, ValueError) as e:
            logger.error("Dropping event %s, payload is not serializable: %s", event, e)
            return

        disconnected: List[WebSocket] = []
        await asyncio.gather(*[self._send_and_track(ws, message, disconnected) for ws in targets])

        for ws in disconnected:
            await self.disconnect(ws)

    async def _send_and_track(self, ws: WebSocket, message: dict, error_list: list):
        try:
            await ws.send_json(message)
        except Exception as e:
            logger.debug("Dropping socket after failed send: %s", e)
            error_list.append(ws)


notifier = RoomManager()
