from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from guardbot.models import (
    ChangeRecord,
    ChannelEntry,
    CollectOutcome,
    MemberRecord,
    Roster,
    TierLevel,
)
from guardbot.privacy import mask_member_id

BEIJING_TZ = ZoneInfo("Asia/Shanghai")
TIER_NAMES = {
    TierLevel.GOVERNOR: "总督",
    TierLevel.ADMIRAL: "提督",
    TierLevel.CAPTAIN: "舰长",
    TierLevel.UNKNOWN: "未知",
}


def _to_beijing(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(BEIJING_TZ).strftime("%Y-%m-%d %H:%M")


def _trend_text(current: int, prev: int | None) -> str:
    if prev is None:
        return "首次统计，暂无环比。"
    delta = current - prev
    if delta > 0:
        return f"较上次增加 {delta} 人。"
    if delta < 0:
        return f"较上次减少 {abs(delta)} 人。"
    return "较上次持平。"


def _member_line(member: MemberRecord) -> str:
    tier = TIER_NAMES.get(member.tier_level, "未知")
    return f"{member.display_name}({mask_member_id(member.member_id)}) {tier}"


def summarize_roster(entry: ChannelEntry, roster: Roster | None, prev_total: int | None) -> str:
    title = entry.display_name or entry.channel_id
    if roster is None:
        return f"{title}（{entry.channel_id}）暂无大航海数据。"

    counts = roster.tier_counts
    lines = [
        f"=== {title} 大航海统计 ===",
        f"房间号：{entry.channel_id}",
        f"统计时间：{_to_beijing(roster.captured_at)}",
        f"总人数：{roster.total_count}（{_trend_text(roster.total_count, prev_total)}）",
        "，".join(
            f"{TIER_NAMES[tier]} {counts.get(tier, 0)}"
            for tier in (TierLevel.GOVERNOR, TierLevel.ADMIRAL, TierLevel.CAPTAIN)
        ),
    ]
    if counts.get(TierLevel.UNKNOWN):
        lines.append(f"未知等级：{counts[TierLevel.UNKNOWN]}")
    return "\n".join(lines)


def summarize_changes(
    entry: ChannelEntry, changes: list[ChangeRecord], max_members: int = 10
) -> str:
    title = entry.display_name or entry.channel_id
    if not changes:
        return f"{title}（{entry.channel_id}）暂无大航海变动记录。"

    lines = [f"=== {title} 大航海变动 ==="]
    for change in changes:
        lines.append(
            f"[{_to_beijing(change.captured_at)}] 新增 {len(change.added)}，流失 {len(change.removed)}"
        )
        for label, members in (("+", change.added), ("-", change.removed)):
            for member in members[:max_members]:
                lines.append(f"  {label} {_member_line(member)}")
            if len(members) > max_members:
                lines.append(f"  {label} ……另有 {len(members) - max_members} 人")
    return "\n".join(lines)


def summarize_outcomes(outcomes: list[CollectOutcome]) -> str:
    if not outcomes:
        return "当前没有跟踪中的直播间。"

    ok = sum(1 for o in outcomes if o.success)
    lines = [
        "=== 大航海采集结果 ===",
        f"成功 {ok} / {len(outcomes)}",
    ]
    for outcome in outcomes:
        name = outcome.display_name or "Unknown"
        if outcome.success:
            lines.append(f"✓ {name}（{outcome.channel_id}）：{outcome.member_count} 人")
        else:
            lines.append(f"✗ {name}（{outcome.channel_id}）：{outcome.error}")
    return "\n".join(lines)


def summarize_channels(channels: list[ChannelEntry]) -> str:
    if not channels:
        return "当前没有跟踪中的直播间。"

    lines = [f"=== 跟踪中的直播间（{len(channels)}）==="]
    for channel in channels:
        updated = _to_beijing(channel.last_updated_at) if channel.last_updated_at else "未采集"
        lines.append(f"{channel.display_name or 'Unknown'}（{channel.channel_id}）更新于 {updated}")
    return "\n".join(lines)
