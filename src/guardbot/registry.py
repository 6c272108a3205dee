from __future__ import annotations

import asyncio
import json
from datetime import datetime

from guardbot.kvstore import KeyValueStore
from guardbot.models import ChannelEntry

CHANNELS_KEY = "channels"


class ChannelRegistry:
    """Tracked live rooms, kept as one JSON list in the key/value store.

    Every read-modify-write of the list runs under one lock, so concurrent
    cycles touching different rooms never drop each other's updates.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv
        self._lock = asyncio.Lock()

    async def _save(self, channels: list[ChannelEntry]) -> None:
        payload = json.dumps([c.to_dict() for c in channels], ensure_ascii=False)
        await self._kv.set(CHANNELS_KEY, payload)

    async def list_channels(self) -> list[ChannelEntry]:
        raw = await self._kv.get(CHANNELS_KEY)
        if not raw:
            return []
        return [ChannelEntry.from_dict(item) for item in json.loads(raw)]

    async def get_channel(self, channel_id: str) -> ChannelEntry | None:
        for channel in await self.list_channels():
            if channel.channel_id == channel_id:
                return channel
        return None

    async def add_channel(self, entry: ChannelEntry) -> ChannelEntry:
        async with self._lock:
            channels = await self.list_channels()
            for existing in channels:
                if existing.channel_id != entry.channel_id:
                    continue
                if entry.display_name:
                    existing.display_name = entry.display_name
                if entry.owner_id:
                    existing.owner_id = entry.owner_id
                await self._save(channels)
                return existing

            channels.append(entry)
            await self._save(channels)
            return entry

    async def remove_channel(self, channel_id: str) -> bool:
        async with self._lock:
            channels = await self.list_channels()
            kept = [c for c in channels if c.channel_id != channel_id]
            if len(kept) == len(channels):
                return False
            await self._save(kept)
            return True

    async def touch(self, channel_id: str, at: datetime) -> None:
        async with self._lock:
            channels = await self.list_channels()
            for channel in channels:
                if channel.channel_id == channel_id:
                    channel.last_updated_at = at
                    await self._save(channels)
                    return
