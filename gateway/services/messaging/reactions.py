# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from typing import Any, Dict, Iterable, List

from gateway.schemas.room import ReactionSummary
from gateway.services.realtime.events import is_annotation


def aggregate_reactions(events: Iterable[Dict[str, Any]]) -> Dict[str, List[ReactionSummary]]:
    """
    Group annotation reactions by target event, then by key.

    Args:
        events: Room events in any order; non-reactions are ignored

    Returns:
        target event id -> reactions in first-seen key order
    """
    grouped: Dict[str, Dict[str, ReactionSummary]] = {}
    for event in events:
        if not is_annotation(event):
            continue
        relates = event["content"]["m.relates_to"]
        target = relates.get("event_id")
        key = relates.get("key")
        if not target or not key:
            continue

        by_key = grouped.setdefault(target, {})
        summary = by_key.get(key)
        if summary is None:
            summary = by_key[key] = ReactionSummary(emoji=key, count=0, senders=[])
        sender = event.get("sender")
        # One reaction per sender and key
        if sender in summary.senders:
            continue
        summary.senders.append(sender)
        summary.count += 1

    return {target: list(by_key.values()) for target, by_key in grouped.items()}
