from __future__ import annotations

import json
from collections.abc import Callable

from guardbot.kvstore import KeyValueStore
from guardbot.models import ChangeRecord, Roster
from guardbot.registry import ChannelRegistry


def snapshot_key(channel_id: str, timestamp: str) -> str:
    return f"snapshot:{channel_id}:{timestamp}"


def latest_key(channel_id: str) -> str:
    return f"latest:{channel_id}"


def timeline_key(channel_id: str) -> str:
    return f"timeline:{channel_id}"


def change_key(channel_id: str, timestamp: str) -> str:
    return f"change:{channel_id}:{timestamp}"


def changes_key(channel_id: str) -> str:
    return f"changes:{channel_id}"


class SnapshotStore:
    """Per-room guard rosters and change records with bounded timelines.

    Keys are strictly per room and no write spans rooms. Two cycles running
    for the same room at once may interleave; the last latest-pointer write
    wins.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        registry: ChannelRegistry,
        history_limit: int = 100,
        change_limit: int = 100,
    ) -> None:
        self._kv = kv
        self._registry = registry
        self.history_limit = history_limit
        self.change_limit = change_limit

    async def _push_bounded(
        self,
        list_key: str,
        timestamp: str,
        limit: int,
        body_key: Callable[[str], str],
    ) -> None:
        await self._kv.list_prepend(list_key, timestamp)
        evicted = await self._kv.list_range(list_key, limit, -1)
        if evicted:
            kept = set(await self._kv.list_range(list_key, 0, limit - 1))
            stale = [body_key(ts) for ts in evicted if ts not in kept]
            if stale:
                await self._kv.delete(*stale)
        await self._kv.list_trim(list_key, 0, limit - 1)

    async def save_snapshot(self, channel_id: str, roster: Roster) -> None:
        timestamp = roster.timestamp
        await self._kv.set(
            snapshot_key(channel_id, timestamp),
            json.dumps(roster.to_dict(), ensure_ascii=False),
        )
        await self._kv.set(latest_key(channel_id), timestamp)
        await self._push_bounded(
            timeline_key(channel_id),
            timestamp,
            self.history_limit,
            lambda ts: snapshot_key(channel_id, ts),
        )
        await self._registry.touch(channel_id, roster.captured_at)

    async def save_change(self, channel_id: str, change: ChangeRecord) -> None:
        timestamp = change.timestamp
        await self._kv.set(
            change_key(channel_id, timestamp),
            json.dumps(change.to_dict(), ensure_ascii=False),
        )
        await self._push_bounded(
            changes_key(channel_id),
            timestamp,
            self.change_limit,
            lambda ts: change_key(channel_id, ts),
        )

    async def get_snapshot(self, channel_id: str, timestamp: str) -> Roster | None:
        raw = await self._kv.get(snapshot_key(channel_id, timestamp))
        if not raw:
            return None
        return Roster.from_dict(json.loads(raw))

    async def get_latest(self, channel_id: str) -> Roster | None:
        timestamp = await self._kv.get(latest_key(channel_id))
        if not timestamp:
            return None
        return await self.get_snapshot(channel_id, timestamp)

    async def get_historical(self, channel_id: str, limit: int = 10) -> list[Roster]:
        if limit <= 0:
            return []
        timeline = await self._kv.list_range(timeline_key(channel_id), 0, limit - 1)
        rosters: list[Roster] = []
        for timestamp in timeline:
            roster = await self.get_snapshot(channel_id, timestamp)
            if roster is not None:
                rosters.append(roster)
        return rosters

    async def get_recent_changes(self, channel_id: str, limit: int = 10) -> list[ChangeRecord]:
        if limit <= 0:
            return []
        timeline = await self._kv.list_range(changes_key(channel_id), 0, limit - 1)
        changes: list[ChangeRecord] = []
        for timestamp in timeline:
            raw = await self._kv.get(change_key(channel_id, timestamp))
            if raw:
                changes.append(ChangeRecord.from_dict(json.loads(raw)))
        return changes
