"""Pure summary helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from timewellspent.social import summaries
from timewellspent.sync.schemas import RollupRow

NOW = datetime(2024, 3, 4, 12, 30, tzinfo=timezone.utc)


def _row(device_id, hour_start, **seconds):
    return RollupRow(device_id=device_id, hour_start=hour_start, updated_at=hour_start, **seconds)


class TestWindow:
    @pytest.mark.parametrize("hours,expected", [(None, 24), (0, 1), (-5, 1), (6, 6), (500, 168)])
    def test_clamp(self, hours, expected):
        assert summaries.clamp_window(hours) == expected

    def test_window_covers_current_hour(self):
        assert summaries.window_start(NOW, 1) == datetime(2024, 3, 4, 12, tzinfo=timezone.utc)
        assert summaries.window_start(NOW, 24) == datetime(2024, 3, 3, 13, tzinfo=timezone.utc)


class TestScore:
    def test_rounds_half_up(self):
        assert summaries.round_half_up(12.5) == 13
        assert summaries.round_half_up(12.49) == 12
        assert summaries.productivity_score(1, 8) == 13

    def test_no_activity_scores_zero(self):
        assert summaries.productivity_score(0, 0) == 0


class TestDominant:
    def test_largest_wins(self):
        assert summaries.dominant_category(
            {"productive": 10, "neutral": 20, "frivolity": 5, "idle": 0}
        ) == "neutral"

    def test_ties_follow_priority(self):
        assert summaries.dominant_category(
            {"productive": 100, "neutral": 100, "frivolity": 100, "idle": 100}
        ) == "productive"
        assert summaries.dominant_category(
            {"productive": 0, "neutral": 0, "frivolity": 50, "idle": 50}
        ) == "frivolity"

    def test_empty_slot_is_idle(self):
        assert summaries.dominant_category(
            {"productive": 0, "neutral": 0, "frivolity": 0, "idle": 0}
        ) == "idle"


@pytest.mark.parametrize("hour,label", [(0, "12AM"), (9, "9AM"), (12, "12PM"), (23, "11PM")])
def test_hour_label(hour, label):
    assert summaries.hour_label(NOW.replace(hour=hour)) == label


class TestSummarize:
    def test_groups_devices_by_owner(self):
        hour = NOW.replace(minute=0)
        rows = [
            _row("laptop", hour, productive=300, idle=60),
            _row("phone", hour - timedelta(hours=1), frivolity=100),
            _row("stranger", hour, productive=999),
        ]

        result = summaries.summarize(rows, {"laptop": "bob", "phone": "bob"}, 24, {"bob": 2})

        assert list(result) == ["bob"]
        bob = result["bob"]
        assert bob["total_active_seconds"] == 400
        assert bob["category_breakdown"]["idle"] == 60
        assert bob["productivity_score"] == 75
        assert bob["emergency_sessions"] == 2
        assert bob["updated_at"] == hour.isoformat()


class TestTimeline:
    def test_slots_cover_window(self):
        start = summaries.window_start(NOW, 4)
        rows = [_row("laptop", start + timedelta(hours=2), neutral=120, idle=30)]

        timeline = summaries.build_timeline("bob", rows, start, 4)

        assert len(timeline["timeline"]) == 4
        assert [s["dominant"] for s in timeline["timeline"]] == ["idle", "idle", "neutral", "idle"]
        assert timeline["totals_by_category"]["neutral"] == 120
        assert timeline["total_active_seconds"] == 120
        assert timeline["productivity_score"] == 0
