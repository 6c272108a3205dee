from __future__ import annotations

import asyncio
from typing import Protocol

from nonebot.log import logger

from guardbot.assembler import RosterAssembler
from guardbot.cache import LookupCache
from guardbot.detector import ChangeDetector
from guardbot.errors import MalformedRosterError
from guardbot.models import (
    ChangeRecord,
    ChannelEntry,
    CollectOutcome,
    CollectResult,
    Roster,
)
from guardbot.registry import ChannelRegistry
from guardbot.repository import SnapshotStore


class DisplayNameSource(Protocol):
    async def resolve_display_name(self, channel_id: str) -> str | None: ...


def name_cache_key(channel_id: str) -> str:
    return f"uname:{channel_id}"


def _error_text(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__


class GuardCollectionService:
    def __init__(
        self,
        assembler: RosterAssembler,
        detector: ChangeDetector,
        store: SnapshotStore,
        registry: ChannelRegistry,
        concurrency: int = 3,
        names: DisplayNameSource | None = None,
        name_cache: LookupCache | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.assembler = assembler
        self.detector = detector
        self.store = store
        self.registry = registry
        self.concurrency = concurrency
        self.names = names
        self.name_cache = name_cache

    async def run_cycle(self, channel_id: str) -> CollectResult:
        members = await self.assembler.assemble(channel_id)
        if not members:
            raise MalformedRosterError(f"No guard data for room {channel_id}")

        roster = Roster.capture(members)
        # The previous latest roster has to be read before the new one is written.
        change = await self.detector.detect_changes(channel_id, roster)
        await self.store.save_snapshot(channel_id, roster)
        if change is not None:
            await self.store.save_change(channel_id, change)
            logger.info(
                "Room {} guards changed: +{} -{}",
                channel_id,
                len(change.added),
                len(change.removed),
            )
        return CollectResult(roster=roster, change=change)

    async def collect_channel(self, entry: ChannelEntry) -> CollectOutcome:
        if not entry.channel_id:
            return CollectOutcome(
                channel_id="",
                display_name=entry.display_name,
                error="Invalid channel entry",
            )

        logger.info("Fetching guards for {} ({})", entry.display_name or "Unknown", entry.channel_id)
        try:
            result = await self.run_cycle(entry.channel_id)
        except Exception as exc:
            logger.exception("Guard collection failed for room {}", entry.channel_id)
            return CollectOutcome(
                channel_id=entry.channel_id,
                display_name=entry.display_name,
                error=_error_text(exc),
            )
        return CollectOutcome(
            channel_id=entry.channel_id,
            display_name=entry.display_name,
            member_count=result.roster.total_count,
        )

    async def collect_all(self, channels: list[ChannelEntry] | None = None) -> list[CollectOutcome]:
        if channels is None:
            channels = await self.registry.list_channels()
        if not channels:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(entry: ChannelEntry) -> CollectOutcome:
            async with semaphore:
                return await self.collect_channel(entry)

        outcomes = await asyncio.gather(*(_bounded(entry) for entry in channels))
        failed = sum(1 for o in outcomes if not o.success)
        logger.info("Collected {} rooms, {} failed", len(outcomes), failed)
        return list(outcomes)

    async def resolve_display_name(self, channel_id: str) -> str | None:
        if self.names is None:
            return None
        key = name_cache_key(channel_id)
        if self.name_cache is not None:
            cached = await self.name_cache.get(key)
            if not cached.ok:
                logger.warning("Name cache read for room {} failed: {}", channel_id, cached.error)
            if cached.value:
                return cached.value

        name = await self.names.resolve_display_name(channel_id)
        if name and self.name_cache is not None:
            stored = await self.name_cache.set(key, name)
            if not stored.ok:
                logger.warning("Name cache write for room {} failed: {}", channel_id, stored.error)
        return name

    async def track_channel(self, channel_id: str, display_name: str | None = None) -> ChannelEntry:
        name = display_name or await self.resolve_display_name(channel_id) or ""
        owner_id = await self.assembler.resolve_owner_id(channel_id)
        entry = ChannelEntry(channel_id=channel_id, display_name=name, owner_id=owner_id)
        return await self.registry.add_channel(entry)

    async def untrack_channel(self, channel_id: str) -> bool:
        return await self.registry.remove_channel(channel_id)

    async def latest(self, channel_id: str) -> Roster | None:
        return await self.store.get_latest(channel_id)

    async def history(self, channel_id: str, limit: int = 10) -> list[Roster]:
        return await self.store.get_historical(channel_id, limit)

    async def recent_changes(self, channel_id: str, limit: int = 10) -> list[ChangeRecord]:
        return await self.store.get_recent_changes(channel_id, limit)
