import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from guardbot.kvstore import KeyValueStore
from guardbot.models import ChangeRecord, ChannelEntry, MemberRecord, Roster, TierLevel
from guardbot.registry import ChannelRegistry
from guardbot.repository import SnapshotStore

BASE = datetime(2025, 3, 1, tzinfo=UTC)


def _member(uid: int) -> MemberRecord:
    return MemberRecord(
        member_id=uid,
        display_name=f"user{uid}",
        avatar_url="",
        tier_level=TierLevel.CAPTAIN,
        tier_sub_level=20,
        tier_badge_name="牌子",
        continuous_months=30,
        rank=uid,
        owner_id=100,
    )


async def _store(tmp_path, history_limit: int = 100, change_limit: int = 100):
    kv = KeyValueStore(tmp_path / "guardbot.sqlite3")
    await kv.init()
    registry = ChannelRegistry(kv)
    return kv, registry, SnapshotStore(kv, registry, history_limit, change_limit)


@pytest.mark.asyncio
async def test_save_and_read_latest(tmp_path) -> None:
    _, registry, store = await _store(tmp_path)
    await registry.add_channel(ChannelEntry(channel_id="5050", display_name="主播"))
    roster = Roster(captured_at=BASE, members=[_member(1), _member(2)])

    await store.save_snapshot("5050", roster)

    latest = await store.get_latest("5050")
    assert latest is not None
    assert latest.captured_at == BASE
    assert latest.members == roster.members
    assert await store.get_latest("6060") is None
    channel = await registry.get_channel("5050")
    assert channel is not None and channel.last_updated_at == BASE


@pytest.mark.asyncio
async def test_timeline_keeps_most_recent_100(tmp_path) -> None:
    kv, _, store = await _store(tmp_path)
    for i in range(150):
        roster = Roster(captured_at=BASE + timedelta(minutes=i), members=[_member(i)])
        await store.save_snapshot("5050", roster)

    history = await store.get_historical("5050", 1000)

    assert len(history) == 100
    assert history[0].captured_at == BASE + timedelta(minutes=149)
    assert history[-1].captured_at == BASE + timedelta(minutes=50)
    evicted = (BASE + timedelta(minutes=49)).isoformat()
    assert await kv.get(f"snapshot:5050:{evicted}") is None


@pytest.mark.asyncio
async def test_historical_respects_limit(tmp_path) -> None:
    _, _, store = await _store(tmp_path)
    for i in range(5):
        await store.save_snapshot("5050", Roster(captured_at=BASE + timedelta(hours=i)))

    history = await store.get_historical("5050", 3)

    assert [r.captured_at.hour for r in history] == [4, 3, 2]
    assert await store.get_historical("5050", 0) == []


@pytest.mark.asyncio
async def test_changes_are_bounded_and_most_recent_first(tmp_path) -> None:
    _, _, store = await _store(tmp_path, change_limit=3)
    for i in range(5):
        change = ChangeRecord(
            captured_at=BASE + timedelta(hours=i),
            added=[_member(i + 10)],
            removed=[_member(i)],
        )
        await store.save_change("5050", change)

    changes = await store.get_recent_changes("5050", 10)

    assert [c.captured_at.hour for c in changes] == [4, 3, 2]
    assert changes[0].added[0].member_id == 14
    assert changes[0].removed[0].member_id == 4


@pytest.mark.asyncio
async def test_registry_add_update_remove(tmp_path) -> None:
    _, registry, _ = await _store(tmp_path)
    await registry.add_channel(ChannelEntry(channel_id="5050", display_name="旧名"))
    await registry.add_channel(ChannelEntry(channel_id="6060", display_name="其他"))
    await registry.add_channel(ChannelEntry(channel_id="5050", display_name="新名", owner_id=100))

    channels = await registry.list_channels()
    assert [(c.channel_id, c.display_name) for c in channels] == [("5050", "新名"), ("6060", "其他")]
    assert channels[0].owner_id == 100

    assert await registry.remove_channel("5050") is True
    assert await registry.remove_channel("5050") is False
    assert [c.channel_id for c in await registry.list_channels()] == ["6060"]


@pytest.mark.asyncio
async def test_concurrent_saves_touch_every_channel(tmp_path) -> None:
    _, registry, store = await _store(tmp_path)
    rooms = [str(1000 + i) for i in range(5)]
    for room in rooms:
        await registry.add_channel(ChannelEntry(channel_id=room))

    await asyncio.gather(
        *(
            store.save_snapshot(room, Roster(captured_at=BASE + timedelta(minutes=i)))
            for i, room in enumerate(rooms)
        ),
        registry.add_channel(ChannelEntry(channel_id="2000", display_name="新房间")),
    )

    stamps = {c.channel_id: c.last_updated_at for c in await registry.list_channels()}
    assert stamps == {
        **{room: BASE + timedelta(minutes=i) for i, room in enumerate(rooms)},
        "2000": None,
    }
