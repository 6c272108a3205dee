from __future__ import annotations

from typing import Any

from guardbot.models import MemberRecord


def mask_member_id(member_id: int) -> str:
    text = str(member_id)
    if len(text) <= 4:
        return text
    return f"{text[:2]}****{text[-2:]}"


def public_member(record: MemberRecord) -> dict[str, Any]:
    data = record.to_dict()
    data["uid"] = mask_member_id(record.member_id)
    return data
