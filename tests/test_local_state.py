"""Cursor persistence and device identity."""

from datetime import datetime, timezone

import pytest

from timewellspent.sync.cursors import CursorStore, Stream
from timewellspent.sync.device import DEVICE_ID_KEY, DeviceRegistry

WHEN = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


class TestCursorStore:
    def test_missing_cursor_is_none(self, settings_store):
        assert CursorStore(settings_store).get(Stream.ledger) is None

    def test_advance_persists(self, settings_store):
        CursorStore(settings_store).advance(Stream.ledger, WHEN)
        assert CursorStore(settings_store).get(Stream.ledger) == WHEN

    def test_clear_one_stream(self, settings_store):
        cursors = CursorStore(settings_store)
        cursors.advance(Stream.ledger, WHEN)
        cursors.advance(Stream.library, WHEN)

        cursors.clear(Stream.ledger)

        assert cursors.get(Stream.ledger) is None
        assert cursors.get(Stream.library) == WHEN

    def test_clear_all(self, settings_store):
        cursors = CursorStore(settings_store)
        cursors.advance(Stream.rollups, WHEN)
        cursors.mark_synced(WHEN)

        cursors.clear()

        assert cursors.snapshot() == {}
        assert cursors.last_sync_at is None

    def test_unreadable_state_is_ignored(self, settings_store):
        settings_store.set_json("sync_state", ["not", "a", "dict"])
        assert CursorStore(settings_store).get(Stream.ledger) is None


class TestDeviceRegistry:
    def test_identity_is_stable(self, settings_store):
        first = DeviceRegistry(settings_store).resolve()
        second = DeviceRegistry(settings_store).resolve()

        assert first.id == second.id
        assert settings_store.get_json(DEVICE_ID_KEY) == first.id
        assert first.name

    def test_set_name_trims(self, settings_store):
        registry = DeviceRegistry(settings_store)
        assert registry.set_name("  Desk  ") == "Desk"
        assert registry.resolve().name == "Desk"

    @pytest.mark.parametrize("name", ["", "   "])
    def test_blank_name_rejected(self, settings_store, name):
        registry = DeviceRegistry(settings_store)
        original = registry.resolve().name
        assert registry.set_name(name) is None
        assert registry.resolve().name == original
