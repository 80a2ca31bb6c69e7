"""
Tests for the local key/value stores and the storage isolation sweeper
"""
import pytest

from services.storage_service import JsonFileStore, MemoryStore
from services.sweeper import StorageSweeper, is_foreign_key, key_owner, owner_key
from utils.constants import ACTIVE_OWNER_KEY


class FlakyStore(MemoryStore):
    """MemoryStore that can fail on scan, removal or clear"""

    def __init__(self, initial=None, fail_remove=(), fail_keys=False, fail_clear=False):
        super().__init__(initial)
        self.fail_remove = set(fail_remove)
        self.fail_keys = fail_keys
        self.fail_clear = fail_clear
        self.scans = 0

    def keys(self):
        self.scans += 1
        if self.fail_keys:
            raise OSError('storage unavailable')
        return super().keys()

    def remove(self, key):
        if key in self.fail_remove:
            raise OSError('access denied')
        super().remove(key)

    def clear(self):
        if self.fail_clear:
            raise OSError('quota exceeded')
        super().clear()


def seeded(*owners):
    data = {'theme': 'dark', owner_key('global', 'settings'): '{}', ACTIVE_OWNER_KEY: owners[0]}
    for owner_id in owners:
        data[owner_key(owner_id, 'subjects')] = '[]'
        data[owner_key(owner_id, 'user_data')] = '{}'
    return data


class TestKeyNamespace:

    def test_owner_key_roundtrip(self):
        assert key_owner(owner_key('abc123', 'subjects')) == 'abc123'

    def test_untagged_keys_have_no_owner(self):
        assert key_owner('theme') is None
        assert key_owner(ACTIVE_OWNER_KEY) is None

    def test_foreign_detection(self):
        assert is_foreign_key('cms_bob_subjects', 'alice')
        assert not is_foreign_key('cms_alice_subjects', 'alice')
        assert not is_foreign_key('cms_global_settings', 'alice')
        assert is_foreign_key('cms__orphan', 'alice')
        assert not is_foreign_key('theme', 'alice')


class TestJsonFileStore:

    def test_survives_new_instance(self, tmp_path):
        path = str(tmp_path / 'store.json')
        JsonFileStore(path).set('cms_a_subjects', '[1]')

        store = JsonFileStore(path)
        assert store.get('cms_a_subjects') == '[1]'
        assert store.keys() == ['cms_a_subjects']

    def test_remove_and_clear(self, tmp_path):
        store = JsonFileStore(str(tmp_path / 'store.json'))
        store.set('a', 1)
        store.set('b', 2)
        store.remove('a')
        store.remove('missing')
        assert store.keys() == ['b']

        store.clear()
        assert store.keys() == []
        assert store.get('b') is None


class TestSweepOnOwnerChange:

    def test_previous_owner_keys_removed(self):
        persistent = MemoryStore(seeded('alice', 'bob'))
        volatile = MemoryStore({owner_key('alice', 'calendar_cursor'): '2025-03', 'draft': 'x'})
        sweeper = StorageSweeper(persistent, volatile)

        report = sweeper.sweep_on_owner_change('alice', 'bob')

        assert not any(key_owner(key) == 'alice' for key in persistent.keys())
        assert owner_key('bob', 'subjects') in persistent.keys()
        assert owner_key('global', 'settings') in persistent.keys()
        assert 'theme' in persistent.keys()
        assert volatile.keys() == []
        assert report.volatile_cleared
        assert report.ok

    def test_any_foreign_owner_is_removed_not_only_previous(self):
        persistent = MemoryStore(seeded('alice', 'bob', 'carol'))
        sweeper = StorageSweeper(persistent, MemoryStore())

        sweeper.sweep_on_owner_change('alice', 'bob')

        assert not any(key_owner(key) in ('alice', 'carol') for key in persistent.keys())

    def test_same_owner_is_a_noop(self):
        persistent = MemoryStore(seeded('alice', 'bob'))
        volatile = MemoryStore({'draft': 'x'})
        sweeper = StorageSweeper(persistent, volatile)

        report = sweeper.sweep_on_owner_change('alice', 'alice')

        assert report.found == set()
        assert owner_key('bob', 'subjects') in persistent.keys()
        assert volatile.keys() == ['draft']

    def test_removal_failure_is_logged_and_sweep_continues(self, caplog):
        bad_key = owner_key('alice', 'subjects')
        persistent = FlakyStore(seeded('alice', 'bob'), fail_remove=[bad_key])
        sweeper = StorageSweeper(persistent, MemoryStore())

        report = sweeper.sweep_on_owner_change('alice', 'bob')

        assert report.failed == {bad_key}
        assert owner_key('alice', 'user_data') not in persistent.keys()
        assert bad_key in caplog.text

    def test_scan_failure_is_reported_not_raised(self):
        sweeper = StorageSweeper(FlakyStore(fail_keys=True), MemoryStore())

        report = sweeper.sweep_on_owner_change('alice', 'bob')

        assert report.scan_failed
        assert not report.ok


class TestSweepForeignOwners:

    def test_returns_and_removes_foreign_keys(self):
        persistent = MemoryStore(seeded('alice', 'bob'))
        volatile = MemoryStore({owner_key('bob', 'calendar_cursor'): '2025-01'})
        sweeper = StorageSweeper(persistent, volatile)

        report = sweeper.sweep_foreign_owners('alice')

        assert report.found == {
            owner_key('bob', 'subjects'), owner_key('bob', 'user_data'), owner_key('bob', 'calendar_cursor')
        }
        assert report.remaining == set()
        assert volatile.keys() == []
        assert owner_key('alice', 'subjects') in persistent.keys()

    def test_rescans_exactly_once(self):
        persistent = FlakyStore(seeded('alice', 'bob'), fail_remove=[owner_key('bob', 'subjects')])
        sweeper = StorageSweeper(persistent, MemoryStore())

        report = sweeper.sweep_foreign_owners('alice')

        assert persistent.scans == 2
        assert report.remaining == {owner_key('bob', 'subjects')}
        assert not report.ok

    def test_clean_storage_skips_rescan(self):
        persistent = FlakyStore(seeded('alice'))
        sweeper = StorageSweeper(persistent, MemoryStore())

        report = sweeper.sweep_foreign_owners('alice')

        assert report.found == set()
        assert persistent.scans == 1

    def test_scan_failure_flags_report(self):
        sweeper = StorageSweeper(MemoryStore(), FlakyStore(fail_keys=True))
        assert sweeper.sweep_foreign_owners('alice').scan_failed


class TestSweepOwner:

    def test_removes_only_that_owner(self):
        persistent = MemoryStore(seeded('alice', 'bob'))
        volatile = MemoryStore({owner_key('alice', 'calendar_cursor'): '2025-03'})
        sweeper = StorageSweeper(persistent, volatile)

        sweeper.sweep_owner('alice')

        assert not any(key_owner(key) == 'alice' for key in persistent.keys() + volatile.keys())
        assert owner_key('bob', 'subjects') in persistent.keys()


class TestActiveOwnerMarker:

    def test_record_read_clear(self):
        sweeper = StorageSweeper(MemoryStore(), MemoryStore())
        sweeper.record_active_owner('alice')
        assert sweeper.active_owner() == 'alice'
        sweeper.clear_active_owner()
        assert sweeper.active_owner() is None

    def test_marker_is_not_swept_as_foreign(self):
        persistent = MemoryStore(seeded('alice'))
        StorageSweeper(persistent, MemoryStore()).sweep_foreign_owners('bob')
        assert persistent.get(ACTIVE_OWNER_KEY) == 'alice'


class TestPurgeAll:

    def test_clears_everything_including_local_databases(self, tmp_path):
        db_dir = tmp_path / 'local_databases'
        db_dir.mkdir()
        (db_dir / 'cms_offline.db').write_text('x')
        (db_dir / 'firestore_main.sqlite').write_text('x')
        (db_dir / 'notes.txt').write_text('keep')
        persistent = JsonFileStore(str(tmp_path / 'store.json'))
        for key, value in seeded('alice', 'bob').items():
            persistent.set(key, value)
        volatile = MemoryStore({'draft': 'x'})

        StorageSweeper(persistent, volatile, local_db_dir=str(db_dir)).purge_all()

        assert persistent.keys() == []
        assert volatile.keys() == []
        assert sorted(p.name for p in db_dir.iterdir()) == ['notes.txt']

    def test_falls_back_to_key_removal_when_clear_fails(self):
        persistent = FlakyStore(seeded('alice'), fail_clear=True)
        report = StorageSweeper(persistent, MemoryStore()).purge_all()

        assert persistent.keys() == []
        assert report.removed

    def test_never_raises(self):
        store = FlakyStore(seeded('alice'), fail_keys=True, fail_clear=True)

        report = StorageSweeper(store, MemoryStore()).purge_all()

        assert report.scan_failed
        assert owner_key('alice', 'subjects') in store._data

    def test_volatile_cleared_reflects_outcome(self):
        report = StorageSweeper(MemoryStore(seeded('alice')), MemoryStore({'draft': 'x'})).purge_all()
        assert report.volatile_cleared

        volatile = FlakyStore({'draft': 'x'}, fail_keys=True, fail_clear=True)
        report = StorageSweeper(MemoryStore(seeded('alice')), volatile).purge_all()
        assert not report.volatile_cleared

        volatile = FlakyStore({'draft': 'x'}, fail_remove=['draft'], fail_clear=True)
        report = StorageSweeper(MemoryStore(seeded('alice')), volatile).purge_all()
        assert not report.volatile_cleared
        assert report.remaining == {'draft'}
