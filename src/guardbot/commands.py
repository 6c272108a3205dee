from __future__ import annotations

import re
from time import monotonic
import unicodedata

from nonebot.log import logger

from guardbot.analyzer import (
    summarize_changes,
    summarize_channels,
    summarize_outcomes,
    summarize_roster,
)
from guardbot.models import ChannelEntry
from guardbot.service import GuardCollectionService

COMMAND_RE = re.compile(
    r"^/\s*guard(?:\s+(help|list|all|add|del|collect|latest|changes))?(?:\s+(\d+))?\s*$"
)
ROOM_COMMANDS = {"add", "del", "collect", "latest", "changes"}

HELP_TEXT = (
    "可用命令：\n"
    "`/guard help`：查看本帮助\n"
    "`/guard list`：查看跟踪中的直播间\n"
    "`/guard add 房间号`：开始跟踪直播间\n"
    "`/guard del 房间号`：停止跟踪直播间\n"
    "`/guard collect 房间号`：立即采集一个直播间的大航海\n"
    "`/guard all`：立即采集所有直播间\n"
    "`/guard latest 房间号`：查看最新大航海统计\n"
    "`/guard changes 房间号`：查看最近的大航海变动"
)
COOLDOWN_TEXT = "触发过于频繁，请稍后再试。"
FAILURE_TEXT = "执行失败，请查看 bot 日志。"


def parse_bot_command(raw_text: str) -> tuple[str, str | None] | None:
    normalized = unicodedata.normalize("NFKC", raw_text)
    normalized = (
        normalized.replace("\u200b", "")
        .replace("\u200c", "")
        .replace("\u200d", "")
        .replace("\ufeff", "")
        .strip()
        .lower()
    )
    m = COMMAND_RE.match(normalized)
    if not m:
        return None
    command = m.group(1) or "help"
    room_id = m.group(2)
    if command in ROOM_COMMANDS and room_id is None:
        return ("help", None)
    return (command, room_id)


class GuardCommands:
    """Turns a parsed ``/guard`` command into the reply text for a group."""

    def __init__(self, service: GuardCollectionService, cooldown_s: float = 8.0) -> None:
        self.service = service
        self.cooldown_s = cooldown_s
        self._last_manual_trigger_at: dict[int, float] = {}

    def _cooling_down(self, group_id: int) -> bool:
        now = monotonic()
        last = self._last_manual_trigger_at.get(group_id)
        if last is not None and now - last < self.cooldown_s:
            return True
        self._last_manual_trigger_at[group_id] = now
        return False

    async def _channel_or_placeholder(self, room_id: str) -> ChannelEntry:
        entry = await self.service.registry.get_channel(room_id)
        return entry or ChannelEntry(channel_id=room_id)

    async def _render_latest(self, room_id: str) -> str:
        entry = await self._channel_or_placeholder(room_id)
        recent = await self.service.history(room_id, 2)
        latest = recent[0] if recent else None
        prev_total = recent[1].total_count if len(recent) > 1 else None
        return summarize_roster(entry, latest, prev_total)

    async def _run(self, command: str, room_id: str | None, group_id: int) -> str:
        if command == "help":
            return HELP_TEXT
        if command == "list":
            return summarize_channels(await self.service.registry.list_channels())
        if command == "all":
            if self._cooling_down(group_id):
                return COOLDOWN_TEXT
            return summarize_outcomes(await self.service.collect_all())

        assert room_id is not None
        if command == "add":
            entry = await self.service.track_channel(room_id)
            return f"已开始跟踪 {entry.display_name or 'Unknown'}（{entry.channel_id}）。"
        if command == "del":
            removed = await self.service.untrack_channel(room_id)
            return f"已停止跟踪 {room_id}。" if removed else f"{room_id} 不在跟踪列表中。"
        if command == "collect":
            if self._cooling_down(group_id):
                return COOLDOWN_TEXT
            entry = await self._channel_or_placeholder(room_id)
            outcome = await self.service.collect_channel(entry)
            if not outcome.success:
                return f"采集失败：{outcome.error}"
            return await self._render_latest(room_id)
        if command == "latest":
            return await self._render_latest(room_id)
        if command == "changes":
            entry = await self._channel_or_placeholder(room_id)
            return summarize_changes(entry, await self.service.recent_changes(room_id, 5))
        return HELP_TEXT

    async def reply(self, command: str, room_id: str | None, group_id: int) -> str:
        try:
            return await self._run(command, room_id, group_id)
        except Exception:
            logger.exception("Command {} {} failed in group {}", command, room_id, group_id)
            return FAILURE_TEXT
