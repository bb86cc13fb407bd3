"""
Friend activity summaries built from hourly rollups.

Pure functions over already-fetched `RollupRow`s; the graph controller does
the fetching. Windows end at the end of the current hour and span
`window_hours` one-hour slots.
"""

import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from timewellspent.models.activity import CATEGORY_PRIORITY
from timewellspent.sync.clock import HOUR, floor_hour, to_iso
from timewellspent.sync.schemas import RollupRow

CATEGORIES = tuple(category.value for category in CATEGORY_PRIORITY)
MIN_WINDOW_HOURS = 1
MAX_WINDOW_HOURS = 168
DEFAULT_WINDOW_HOURS = 24
EMERGENCY_KIND = "emergency-session"


def clamp_window(hours: Optional[int]) -> int:
    if hours is None:
        return DEFAULT_WINDOW_HOURS
    return min(max(int(hours), MIN_WINDOW_HOURS), MAX_WINDOW_HOURS)


def window_start(now: datetime, hours: int) -> datetime:
    return floor_hour(now) - timedelta(hours=hours - 1)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def productivity_score(productive: int, active: int) -> int:
    if active <= 0:
        return 0
    return round_half_up(productive / active * 100)


def _empty_breakdown() -> dict[str, int]:
    return {category: 0 for category in CATEGORIES}


def _add(breakdown: dict[str, int], row: RollupRow) -> None:
    breakdown["productive"] += row.productive
    breakdown["neutral"] += row.neutral
    breakdown["frivolity"] += row.frivolity
    breakdown["idle"] += row.idle


def dominant_category(breakdown: dict[str, int]) -> str:
    """Largest category; ties go to the earlier one in priority order. Empty slots are idle."""
    best = CATEGORIES[0]
    for category in CATEGORIES[1:]:
        if breakdown[category] > breakdown[best]:
            best = category
    return best if breakdown[best] > 0 else "idle"


def hour_label(value: datetime) -> str:
    hour = value.hour % 12 or 12
    return f"{hour}{'PM' if value.hour >= 12 else 'AM'}"


def summarize(
    rollups: Iterable[RollupRow],
    device_owners: dict[str, str],
    window_hours: int,
    emergency_counts: Optional[dict[str, int]] = None,
) -> dict[str, dict]:
    """Per-user totals over the window, keyed by user id.

    Users with no rollups in the window are absent from the result.
    """
    summaries: dict[str, dict] = {}
    for row in rollups:
        user_id = device_owners.get(row.device_id)
        if user_id is None:
            continue
        summary = summaries.get(user_id)
        if summary is None:
            summary = summaries[user_id] = {
                "user_id": user_id,
                "updated_at": row.updated_at,
                "period_hours": window_hours,
                "total_active_seconds": 0,
                "category_breakdown": _empty_breakdown(),
                "productivity_score": 0,
                "emergency_sessions": 0,
            }
        _add(summary["category_breakdown"], row)
        summary["total_active_seconds"] += row.active_seconds
        if row.updated_at > summary["updated_at"]:
            summary["updated_at"] = row.updated_at

    for user_id, summary in summaries.items():
        summary["productivity_score"] = productivity_score(
            summary["category_breakdown"]["productive"], summary["total_active_seconds"],
        )
        summary["emergency_sessions"] = (emergency_counts or {}).get(user_id, 0)
        summary["updated_at"] = to_iso(summary["updated_at"])
    return summaries


def build_timeline(
    user_id: str,
    rollups: Iterable[RollupRow],
    start: datetime,
    window_hours: int,
) -> dict:
    slots = []
    index: dict[datetime, dict] = {}
    for i in range(window_hours):
        slot_start = start + i * HOUR
        slot = {"start": to_iso(slot_start), "hour": hour_label(slot_start), **_empty_breakdown()}
        slots.append(slot)
        index[slot_start] = slot

    totals = _empty_breakdown()
    updated_at = start
    for row in rollups:
        _add(totals, row)
        if row.updated_at > updated_at:
            updated_at = row.updated_at
        slot = index.get(floor_hour(row.hour_start))
        if slot is not None:
            _add(slot, row)

    for slot in slots:
        slot["dominant"] = dominant_category(slot)

    active = totals["productive"] + totals["neutral"] + totals["frivolity"]
    return {
        "user_id": user_id,
        "window_hours": window_hours,
        "updated_at": to_iso(updated_at),
        "totals_by_category": totals,
        "total_active_seconds": active,
        "productivity_score": productivity_score(totals["productive"], active),
        "timeline": slots,
    }
