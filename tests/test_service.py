import asyncio

import pytest

from guardbot.assembler import RosterAssembler
from guardbot.cache import LookupCache
from guardbot.detector import ChangeDetector
from guardbot.errors import PersistenceError, SourceUnavailable
from guardbot.kvstore import KeyValueStore
from guardbot.models import ChannelEntry, GuardPage
from guardbot.registry import ChannelRegistry
from guardbot.repository import SnapshotStore
from guardbot.service import GuardCollectionService


def _entry(uid: int) -> dict:
    return {
        "uinfo": {
            "uid": uid,
            "base": {"name": f"user{uid}", "face": ""},
            "medal": {"guard_level": 3, "level": 1, "name": "牌子"},
        },
    }


class RoomSource:
    """One page per room; ``rooms[room] = [uids]`` or an exception to raise."""

    def __init__(self, rooms: dict) -> None:
        self.rooms = rooms
        self.names = {room: f"主播{room}" for room in rooms}
        self.in_flight = 0
        self.max_in_flight = 0

    async def resolve_owner_id(self, channel_id: str) -> int | None:
        return 100

    async def resolve_display_name(self, channel_id: str) -> str | None:
        return self.names.get(channel_id)

    async def fetch_page(self, channel_id: str, owner_id: int, page: int) -> GuardPage:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            uids = self.rooms[channel_id]
            if isinstance(uids, Exception):
                raise uids
            return GuardPage(page=1, total_pages=1, list_entries=[_entry(u) for u in uids])
        finally:
            self.in_flight -= 1


class FailingSnapshotStore(KeyValueStore):
    """Refuses snapshot writes for one room."""

    def __init__(self, db_path, failing_room: str) -> None:
        super().__init__(db_path)
        self.failing_room = failing_room

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None:
        if key.startswith(f"snapshot:{self.failing_room}:"):
            raise PersistenceError(f"SET {key!r} failed: database is locked")
        await super().set(key, value, ttl_s=ttl_s)


async def _service(
    tmp_path, source: RoomSource, concurrency: int = 3, kv: KeyValueStore | None = None
) -> GuardCollectionService:
    kv = kv or KeyValueStore(tmp_path / "guardbot.sqlite3")
    await kv.init()
    registry = ChannelRegistry(kv)
    store = SnapshotStore(kv, registry)
    return GuardCollectionService(
        assembler=RosterAssembler(source, LookupCache(kv, ttl_s=86400)),
        detector=ChangeDetector(store),
        store=store,
        registry=registry,
        concurrency=concurrency,
        names=source,
        name_cache=LookupCache(kv, ttl_s=86400),
    )


@pytest.mark.asyncio
async def test_first_collection_is_baseline(tmp_path) -> None:
    service = await _service(tmp_path, RoomSource({"5050": [1, 2, 3]}))

    result = await service.run_cycle("5050")

    assert result.change is None
    assert result.roster.total_count == 3
    assert await service.recent_changes("5050") == []


@pytest.mark.asyncio
async def test_second_collection_records_change(tmp_path) -> None:
    source = RoomSource({"5050": [1, 2, 3]})
    service = await _service(tmp_path, source)
    await service.run_cycle("5050")

    source.rooms["5050"] = [2, 3, 4]
    result = await service.run_cycle("5050")

    assert result.change is not None
    assert [m.member_id for m in result.change.added] == [4]
    assert [m.member_id for m in result.change.removed] == [1]
    changes = await service.recent_changes("5050")
    assert len(changes) == 1
    assert changes[0].captured_at == result.roster.captured_at


@pytest.mark.asyncio
async def test_unchanged_membership_writes_no_change(tmp_path) -> None:
    source = RoomSource({"5050": [1, 2, 3]})
    service = await _service(tmp_path, source)
    await service.run_cycle("5050")

    source.rooms["5050"] = [3, 2, 1]
    result = await service.run_cycle("5050")

    assert result.change is None
    assert await service.recent_changes("5050") == []
    assert len(await service.history("5050")) == 2


@pytest.mark.asyncio
async def test_collect_all_isolates_channel_failures(tmp_path) -> None:
    source = RoomSource(
        {
            "1001": [1, 2],
            "1002": SourceUnavailable("guard list unreachable"),
            "1003": [5, 6, 7],
        }
    )
    service = await _service(tmp_path, source)
    channels = [
        ChannelEntry(channel_id="1001", display_name="A"),
        ChannelEntry(channel_id="1002", display_name="B"),
        ChannelEntry(channel_id="1003", display_name="C"),
    ]

    outcomes = await service.collect_all(channels)

    assert [o.channel_id for o in outcomes] == ["1001", "1002", "1003"]
    assert [o.success for o in outcomes] == [True, False, True]
    assert outcomes[0].member_count == 2
    assert outcomes[2].member_count == 3
    assert outcomes[1].member_count is None
    assert "No guard data" in outcomes[1].error
    assert await service.latest("1002") is None


@pytest.mark.asyncio
async def test_collect_all_reports_unexpected_errors(tmp_path) -> None:
    source = RoomSource({"1001": [1], "1002": RuntimeError("boom")})
    service = await _service(tmp_path, source)

    outcomes = await service.collect_all(
        [
            ChannelEntry(channel_id="1001"),
            ChannelEntry(channel_id="1002"),
            ChannelEntry(channel_id="", display_name="broken"),
        ]
    )

    assert [o.success for o in outcomes] == [True, False, False]
    assert outcomes[1].error == "boom"
    assert outcomes[2].error == "Invalid channel entry"


@pytest.mark.asyncio
async def test_collect_all_bounds_concurrency(tmp_path) -> None:
    rooms = {str(2000 + i): [i + 1] for i in range(8)}
    source = RoomSource(rooms)
    service = await _service(tmp_path, source, concurrency=2)
    for room in rooms:
        await service.track_channel(room)

    outcomes = await service.collect_all()

    assert len(outcomes) == 8
    assert all(o.success for o in outcomes)
    assert source.max_in_flight <= 2
    assert outcomes[0].display_name == "主播2000"


@pytest.mark.asyncio
async def test_track_and_untrack_channel(tmp_path) -> None:
    service = await _service(tmp_path, RoomSource({"5050": [1]}))

    entry = await service.track_channel("5050")

    assert entry.display_name == "主播5050"
    assert entry.owner_id == 100
    assert [c.channel_id for c in await service.registry.list_channels()] == ["5050"]
    assert await service.untrack_channel("5050") is True
    assert await service.registry.list_channels() == []


@pytest.mark.asyncio
async def test_collect_all_reports_persistence_failure(tmp_path) -> None:
    source = RoomSource({"1001": [1, 2], "1002": [3], "1003": [4, 5, 6]})
    kv = FailingSnapshotStore(tmp_path / "guardbot.sqlite3", failing_room="1002")
    service = await _service(tmp_path, source, kv=kv)

    outcomes = await service.collect_all(
        [
            ChannelEntry(channel_id="1001"),
            ChannelEntry(channel_id="1002"),
            ChannelEntry(channel_id="1003"),
        ]
    )

    assert [o.success for o in outcomes] == [True, False, True]
    assert "database is locked" in outcomes[1].error
    assert [o.member_count for o in outcomes] == [2, None, 3]
    assert await service.latest("1002") is None
    latest = await service.latest("1003")
    assert latest is not None and latest.total_count == 3
