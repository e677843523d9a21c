"""
Unit tests for opt-in pruning.
"""
import os
import time

import pytest

from certs.errors import RotationInProgress
from certs.retention import prune
from tests.factories import DOMAIN


@pytest.fixture
def history(rotator, store, backups, published):
    """Four generations published in turn, three backups."""
    published(days=5)
    for _ in range(3):
        rotator.rotate(DOMAIN, force=True)
    return store.list_generations(DOMAIN.name)


class TestPrune:
    """Tests for prune()."""

    def test_keeps_everything_by_default(self, rotator, store, backups, history):
        result = prune(rotator, DOMAIN.name)
        assert result.removed_slots == []
        assert result.removed_backups == []
        assert store.list_generations(DOMAIN.name) == history
        assert len(backups.list_snapshots(DOMAIN.name)) == 3

    def test_keep_slots_never_removes_live(self, rotator, store, history):
        live = store.current_generation(DOMAIN.name)
        result = prune(rotator, DOMAIN.name, keep_slots=1)

        assert result.removed_slots == history[:2]
        assert store.list_generations(DOMAIN.name) == history[2:]
        assert store.current_generation(DOMAIN.name) == live == history[-1]

    def test_keep_backups_removes_oldest(self, rotator, backups, history):
        before = backups.list_snapshots(DOMAIN.name)
        result = prune(rotator, DOMAIN.name, keep_backups=2)

        assert result.removed_backups == [before[0].path.name]
        assert [s.path for s in backups.list_snapshots(DOMAIN.name)] == [s.path for s in before[1:]]

    def test_removes_old_orphans_only(self, rotator, store):
        slots_dir = store.slots_dir(DOMAIN.name)
        slots_dir.mkdir(parents=True)
        old = slots_dir / ".tmp-000009-1-aaaa"
        fresh = slots_dir / ".tmp-000010-1-bbbb"
        old.mkdir()
        fresh.mkdir()
        stale = time.time() - 3 * 3600
        os.utime(old, (stale, stale))

        result = prune(rotator, DOMAIN.name, orphan_max_age_hours=1)

        assert result.removed_orphans == [old.name]
        assert not old.exists()
        assert fresh.exists()

    def test_prune_waits_for_rotation_lock(self, rotator, history):
        rotator.locks.timeout = 0.1
        with rotator.locks.hold(DOMAIN.name):
            with pytest.raises(RotationInProgress):
                prune(rotator, DOMAIN.name, keep_slots=1)
