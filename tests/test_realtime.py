from datetime import datetime

from campus_platform.realtime.manager import RoomManager, team_room


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


async def connected(manager, *rooms, fail=False):
    ws = FakeSocket(fail=fail)
    await manager.connect(ws)
    for room in rooms:
        await manager.join(ws, room)
    return ws


class TestRoomManager:

    async def test_emit_reaches_only_the_room(self):
        manager = RoomManager()
        member = await connected(manager, team_room("T1"))
        outsider = await connected(manager, team_room("T2"))

        await manager.emit(team_room("T1"), "exam-completed", {"at": datetime(2026, 3, 2, 10, 0)})

        assert member.accepted
        assert member.sent == [{"event": "exam-completed", "data": {"at": "2026-03-02T10:00:00"}}]
        assert outsider.sent == []

    async def test_emit_many_delivers_once_per_socket(self):
        manager = RoomManager()
        ws = await connected(manager, "admin-room", "exam-management")

        await manager.emit_many(["admin-room", "exam-management"], "teams-distributed", {"total_slots": 3})

        assert len(ws.sent) == 1

    async def test_failed_socket_is_dropped(self):
        manager = RoomManager()
        healthy = await connected(manager, "room")
        broken = await connected(manager, "room", fail=True)

        await manager.broadcast("milestone-chain-published", {"chain_id": "CHN_1"})

        assert len(healthy.sent) == 1
        assert broken not in manager.connections
        assert manager.room_size("room") == 1

    async def test_empty_rooms_are_removed(self):
        manager = RoomManager()
        ws = await connected(manager, "room")

        await manager.leave(ws, "room")
        assert "room" not in manager.rooms

        await manager.emit("room", "ignored")
        assert ws.sent == []
