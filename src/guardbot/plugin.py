from __future__ import annotations

from zoneinfo import ZoneInfo

from nonebot import get_driver, logger, on_message
from nonebot.adapters.onebot.v11 import Bot, GroupMessageEvent
from nonebot.plugin import require

from guardbot.assembler import RosterAssembler
from guardbot.cache import LookupCache
from guardbot.collector import GuardListClient
from guardbot.commands import GuardCommands, parse_bot_command
from guardbot.config import settings
from guardbot.detector import ChangeDetector
from guardbot.kvstore import KeyValueStore
from guardbot.registry import ChannelRegistry
from guardbot.repository import SnapshotStore
from guardbot.service import GuardCollectionService

require("nonebot_plugin_apscheduler")
from nonebot_plugin_apscheduler import scheduler


driver = get_driver()
kv = KeyValueStore(settings.db_path)
client = GuardListClient(
    page_size=settings.page_size,
    timeout_s=settings.request_timeout_s,
    user_agent=settings.user_agent,
)
registry = ChannelRegistry(kv)
store = SnapshotStore(
    kv,
    registry,
    history_limit=settings.snapshot_history_limit,
    change_limit=settings.change_history_limit,
)
service = GuardCollectionService(
    assembler=RosterAssembler(client, LookupCache(kv, settings.owner_cache_ttl_seconds)),
    detector=ChangeDetector(store),
    store=store,
    registry=registry,
    concurrency=settings.collect_concurrency,
    names=client,
    name_cache=LookupCache(kv, settings.owner_cache_ttl_seconds),
)
commands = GuardCommands(service, cooldown_s=settings.manual_cooldown_seconds)

BEIJING_TZ = ZoneInfo("Asia/Shanghai")


def _is_group_allowed(group_id: int) -> bool:
    return str(group_id) in set(settings.enabled_groups)


@driver.on_startup
async def _on_startup() -> None:
    await kv.init()
    logger.info("guardbot store initialized at {}", settings.db_path)
    logger.info("guardbot enabled groups: {}", settings.enabled_groups)

    @scheduler.scheduled_job(
        "cron",
        minute=settings.collect_cron_minute,
        hour=settings.collect_cron_hour,
        timezone=BEIJING_TZ,
        id="guardbot_collect_all",
    )
    async def _scheduled_collect() -> None:
        try:
            outcomes = await service.collect_all()
        except Exception:
            logger.exception("Scheduled guard collection failed")
            return
        failed = [o for o in outcomes if not o.success]
        for outcome in failed:
            logger.warning("Room {} failed: {}", outcome.channel_id, outcome.error)


@driver.on_shutdown
async def _on_shutdown() -> None:
    await client.aclose()


guard_msg = on_message(priority=10, block=False)


@guard_msg.handle()
async def _handle_guard(bot: Bot, event: GroupMessageEvent) -> None:
    if not _is_group_allowed(event.group_id):
        return

    parsed = parse_bot_command(event.get_plaintext().strip())
    if parsed is None:
        return
    command, room_id = parsed
    logger.info(
        "Received command {} {} from user {} in group {}",
        command,
        room_id,
        event.user_id,
        event.group_id,
    )

    text = await commands.reply(command, room_id, event.group_id)
    await bot.send_group_msg(group_id=event.group_id, message=text)
