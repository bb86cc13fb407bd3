"""Remote retention pruning and its once-a-day cadence."""

from datetime import timedelta

import pytest

from tests.conftest import T0
from timewellspent.sync.clock import to_iso
from timewellspent.sync.cursors import Stream


def _rollup(device_id, hour_start):
    return {
        "device_id": device_id,
        "hour_start": to_iso(hour_start),
        "productive": 60,
        "neutral": 0,
        "frivolity": 0,
        "idle": 0,
        "updated_at": to_iso(hour_start),
    }


def _consumption(row_id, user_id, occurred_at):
    return {
        "id": row_id,
        "user_id": user_id,
        "device_id": "elsewhere",
        "occurred_at": to_iso(occurred_at),
        "kind": "library-item",
    }


def _deletes(remote) -> int:
    return remote.requests.count(("DELETE", "consumption_log"))


@pytest.fixture
def device(make_device, remote):
    device = make_device()
    remote.tables["activity_rollups"] += [
        _rollup(device.id, (T0 - timedelta(days=46)).replace(minute=0)),
        _rollup(device.id, (T0 - timedelta(days=2)).replace(minute=0)),
        _rollup("someone-elses-device", (T0 - timedelta(days=90)).replace(minute=0)),
    ]
    remote.tables["consumption_log"] += [
        _consumption("old", "user-a", T0 - timedelta(days=181)),
        _consumption("recent", "user-a", T0 - timedelta(days=10)),
        _consumption("other-user", "user-b", T0 - timedelta(days=365)),
    ]
    return device


class TestRetention:
    @pytest.mark.asyncio
    async def test_prunes_own_rows_past_retention(self, device, remote):
        result = await device.engine.sync_now()

        assert result["housekeeping"]["ran"] is True
        assert result["housekeeping"]["devices"] == 1
        rollups = {(r["device_id"], r["hour_start"]) for r in remote.rows("activity_rollups")}
        assert rollups == {
            (device.id, to_iso((T0 - timedelta(days=2)).replace(minute=0))),
            ("someone-elses-device", to_iso((T0 - timedelta(days=90)).replace(minute=0))),
        }
        assert sorted(r["id"] for r in remote.rows("consumption_log")) == ["other-user", "recent"]


class TestCadence:
    @pytest.mark.asyncio
    async def test_runs_at_most_once_per_interval(self, device, remote, clock):
        await device.engine.sync_now()
        assert _deletes(remote) == 1

        clock.advance(hours=1)
        result = await device.engine.sync_now()
        assert result["housekeeping"] == {"ran": False}
        assert _deletes(remote) == 1

        clock.advance(hours=23)
        result = await device.engine.sync_now()
        assert result["housekeeping"]["ran"] is True
        assert _deletes(remote) == 2
        assert device.engine.cursors.get(Stream.housekeeping) == clock.now()

    @pytest.mark.asyncio
    async def test_failure_does_not_fail_the_pass(self, device, remote, clock):
        remote.fail("DELETE", "consumption_log")

        result = await device.engine.sync_now()

        assert result["ok"] is True
        assert result["housekeeping"] == {"ran": False, "error": "remote unavailable"}
        assert device.engine.cursors.get(Stream.housekeeping) is None

        remote.failures.clear()
        clock.advance(minutes=5)
        result = await device.engine.sync_now()
        assert result["housekeeping"]["ran"] is True
        assert device.engine.cursors.get(Stream.housekeeping) == clock.now()
