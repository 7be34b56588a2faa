"""Tests for sync cycles run through SyncEngine."""

import re
import time

import pytest

from conftest import write_local
from ledgersync.config import ConflictStrategy
from ledgersync.engine import BUSY_MESSAGE, LOCKED_MESSAGE, TOTAL_STEPS
from ledgersync.exceptions import StoreError
from ledgersync.fingerprint import compute_hash
from ledgersync.ledger import SyncItemState, SyncLedger
from ledgersync.lock import SyncLock

CONFLICT_NAME = re.compile(r"note \(conflict \d{4}-\d{2}-\d{2} \d{6}\)\.md")


def local_root(engine):
    return engine.settings.local_root


def load_ledger(engine) -> SyncLedger:
    return engine.ledger_store.load()


def seed_ledger(engine, contents: dict[str, str]) -> None:
    """Record paths as synced with the given contents.

    Local mtimes are left at zero so the scanner re-reads the files.
    """
    ledger = SyncLedger()
    now = time.time()
    for path, content in contents.items():
        ledger.set_item(
            path,
            SyncItemState(
                local_mtime=0.0,
                remote_mtime=now,
                content_hash=compute_hash(content),
                synced_at=now,
                size=len(content.encode("utf-8")),
            ),
        )
    engine.ledger_store.save(ledger)


def assert_no_changes(result):
    assert result.success, result.errors
    assert result.total_operations == 0


class TestNewFiles:
    """Tests for first-time uploads and downloads."""

    def test_new_local_file_is_uploaded(self, engine, remote):
        """Test a new local file is uploaded and recorded in the ledger."""
        write_local(local_root(engine), "notes/a.md", "alpha")

        result = engine.sync()

        assert result.success, result.errors
        assert result.uploaded == 1
        assert result.total_operations == 1
        assert remote.read("notes/a.md") == b"alpha"

        item = load_ledger(engine).get_item("notes/a.md")
        assert item is not None
        assert item.content_hash == compute_hash("alpha")
        assert remote.manifest() == {"notes/a.md": compute_hash("alpha")}

    def test_second_cycle_is_idle(self, engine):
        """Test a cycle right after a successful one does nothing."""
        write_local(local_root(engine), "a.md", "alpha")
        write_local(local_root(engine), "notes/b.md", "beta")
        engine.sync()

        assert_no_changes(engine.sync())

    def test_new_remote_file_is_downloaded(self, make_engine):
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "notes/a.md", "alpha")
        device_a.sync()

        result = device_b.sync()

        assert result.success, result.errors
        assert result.downloaded == 1
        assert (local_root(device_b) / "notes/a.md").read_text() == "alpha"
        assert_no_changes(device_b.sync())
        assert_no_changes(device_a.sync())

    def test_identical_files_created_on_both_sides(self, make_engine, remote):
        """Test the same new content on both sides is registered, not transferred."""
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "n.md", "same")
        write_local(local_root(device_b), "n.md", "same")
        device_a.sync()

        result = device_b.sync()

        assert_no_changes(result)
        assert load_ledger(device_b).get_item("n.md").content_hash == compute_hash("same")

    def test_state_dir_and_excluded_folders_stay_local(self, engine, remote):
        write_local(local_root(engine), "a.md", "alpha")
        write_local(local_root(engine), ".trash/old.md", "old")

        engine.sync()
        engine.sync()

        assert remote.content_paths() == {"a.md"}

    def test_attachments_disabled(self, make_engine, remote):
        """Test binary files are neither uploaded nor downloaded."""
        engine = make_engine(sync_attachments=False)
        write_local(local_root(engine), "a.md", "alpha")
        write_local(local_root(engine), "local.png", b"\x89PNG local")
        remote.write("remote.png", b"\x89PNG remote")

        result = engine.sync()

        assert result.success, result.errors
        assert result.uploaded == 1
        assert result.downloaded == 0
        assert remote.read("local.png") is None
        assert not (local_root(engine) / "remote.png").exists()
        assert remote.read("remote.png") == b"\x89PNG remote"


class TestEdits:
    """Tests for propagating modifications."""

    def test_local_edit_is_uploaded(self, engine, remote):
        write_local(local_root(engine), "a.md", "alpha")
        engine.sync()
        write_local(local_root(engine), "a.md", "alpha, edited")

        result = engine.sync()

        assert result.success, result.errors
        assert result.uploaded == 1
        assert remote.read("a.md") == b"alpha, edited"

    def test_remote_edit_is_downloaded(self, make_engine):
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "a.md", "alpha")
        device_a.sync()
        device_b.sync()

        write_local(local_root(device_a), "a.md", "alpha, edited on a")
        device_a.sync()
        result = device_b.sync()

        assert result.success, result.errors
        assert result.downloaded == 1
        assert result.conflicts == 0
        assert (local_root(device_b) / "a.md").read_text() == "alpha, edited on a"


class TestRenames:
    """Tests for rename detection."""

    def test_pure_rename(self, engine, remote):
        """Test a moved file becomes a remote move, not delete plus upload."""
        seed_ledger(engine, {"old/x.md": "content"})
        write_local(local_root(engine), "new/x.md", "content")
        remote.write("old/x.md", b"content")
        remote.write_manifest({"old/x.md": compute_hash("content")})

        result = engine.sync()

        assert result.success, result.errors
        assert result.renames == 1
        assert result.uploaded == 0
        assert result.deleted_remote == 0
        assert remote.content_paths() == {"new/x.md"}
        assert remote.read("new/x.md") == b"content"

        ledger = load_ledger(engine)
        assert ledger.get_item("old/x.md") is None
        assert ledger.get_item("new/x.md").content_hash == compute_hash("content")
        assert remote.manifest() == {"new/x.md": compute_hash("content")}

    def test_rename_reaches_other_device(self, make_engine):
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "old.md", "content")
        device_a.sync()
        device_b.sync()

        (local_root(device_a) / "old.md").rename(local_root(device_a) / "new.md")
        assert device_a.sync().renames == 1
        result = device_b.sync()

        assert result.success, result.errors
        assert result.downloaded == 1
        assert result.deleted_local == 1
        assert not (local_root(device_b) / "old.md").exists()
        assert (local_root(device_b) / "new.md").read_text() == "content"

    def test_each_old_path_is_used_once(self, engine, remote):
        """Test two copies of a moved file yield one rename and one upload."""
        seed_ledger(engine, {"old.md": "content"})
        write_local(local_root(engine), "copy1.md", "content")
        write_local(local_root(engine), "copy2.md", "content")
        remote.write("old.md", b"content")
        remote.write_manifest({"old.md": compute_hash("content")})

        result = engine.sync()

        assert result.success, result.errors
        assert result.renames == 1
        assert result.uploaded == 1
        assert remote.content_paths() == {"copy1.md", "copy2.md"}

    def test_unrelated_new_file_is_uploaded(self, engine, remote):
        seed_ledger(engine, {"old.md": "content"})
        write_local(local_root(engine), "other.md", "something else")
        remote.write("old.md", b"content")
        remote.write_manifest({"old.md": compute_hash("content")})

        result = engine.sync()

        assert result.renames == 0
        assert result.uploaded == 1
        assert result.deleted_remote == 1
        assert remote.content_paths() == {"other.md"}

    def test_failed_move_keeps_old_remote_copy(self, engine, remote):
        """Test a move that fails leaves the old remote file for a retry."""
        seed_ledger(engine, {"old.md": "content"})
        write_local(local_root(engine), "new.md", "content")
        remote.write("old.md", b"content")
        remote.write_manifest({"old.md": compute_hash("content")})
        remote.fail("put", StoreError("boom"), path="vault/new.md")

        result = engine.sync()

        assert result.success is False
        assert result.errors == ["Rename error new.md: boom"]
        assert result.deleted_remote == 0
        assert remote.content_paths() == {"old.md"}
        assert load_ledger(engine).get_item("old.md") is not None

        remote.clear_failures()
        result = engine.sync()

        assert result.success, result.errors
        assert result.renames == 1
        assert remote.content_paths() == {"new.md"}


class TestConflicts:
    """Tests for double changes."""

    def setup_conflict(self, engine, remote):
        seed_ledger(engine, {"note.md": "original"})
        write_local(local_root(engine), "note.md", "local version")
        remote.write("note.md", b"remote version!")
        remote.write_manifest({"note.md": compute_hash("remote version!")})

    def test_copy_strategy(self, engine, remote):
        """Test both versions survive: local as a conflict copy, remote in place."""
        self.setup_conflict(engine, remote)

        result = engine.sync()

        assert result.success, result.errors
        assert result.conflicts == 1
        assert (local_root(engine) / "note.md").read_text() == "remote version!"

        copies = [p for p in local_root(engine).iterdir() if CONFLICT_NAME.fullmatch(p.name)]
        assert len(copies) == 1
        assert copies[0].read_text() == "local version"

        assert remote.read("note.md") == b"remote version!"
        assert remote.read(copies[0].name) == b"local version"
        assert_no_changes(engine.sync())

    def test_same_edit_on_both_sides(self, engine, remote):
        """Test matching edits on both sides are registered, not conflicted."""
        seed_ledger(engine, {"note.md": "original"})
        write_local(local_root(engine), "note.md", "same edit")
        remote.write("note.md", b"same edit")
        remote.write_manifest({"note.md": compute_hash("same edit")})

        result = engine.sync()

        assert_no_changes(result)
        assert not any(CONFLICT_NAME.fullmatch(p.name) for p in local_root(engine).iterdir())
        assert load_ledger(engine).get_item("note.md").content_hash == compute_hash("same edit")

    def test_conflict_after_aborted_cycle_is_not_repeated(self, engine, remote):
        """Test a cycle cancelled after a conflict copy does not write another."""
        self.setup_conflict(engine, remote)

        def progress(message, current, total):
            if current == 5:
                engine.cancel()

        engine.progress = progress
        first = engine.sync()
        assert first.conflicts == 1
        assert first.errors == ["Sync cancelled"]

        engine.progress = None
        second = engine.sync()

        assert second.success, second.errors
        assert second.conflicts == 0
        copies = [p for p in local_root(engine).iterdir() if CONFLICT_NAME.fullmatch(p.name)]
        assert len(copies) == 1
        assert (local_root(engine) / "note.md").read_text() == "remote version!"
        assert_no_changes(engine.sync())

    def test_local_wins(self, make_engine, remote):
        engine = make_engine(conflict_strategy=ConflictStrategy.LOCAL_WINS)
        self.setup_conflict(engine, remote)

        result = engine.sync()

        assert result.conflicts == 1
        assert remote.read("note.md") == b"local version"
        assert (local_root(engine) / "note.md").read_text() == "local version"
        assert remote.content_paths() == {"note.md"}

    def test_remote_wins(self, make_engine, remote):
        engine = make_engine(conflict_strategy="remote-wins")
        self.setup_conflict(engine, remote)

        result = engine.sync()

        assert result.conflicts == 1
        assert (local_root(engine) / "note.md").read_text() == "remote version!"
        assert list(local_root(engine).glob("*conflict*")) == []

    def test_independent_creation_conflicts(self, make_engine, remote):
        """Test the same new path with different content on both sides."""
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "note.md", "from a")
        write_local(local_root(device_b), "note.md", "from b, longer")
        device_a.sync()

        result = device_b.sync()

        assert result.conflicts == 1
        assert (local_root(device_b) / "note.md").read_text() == "from a"
        copies = [
            p for p in local_root(device_b).iterdir() if CONFLICT_NAME.fullmatch(p.name)
        ]
        assert [p.read_text() for p in copies] == ["from b, longer"]

        result = device_a.sync()
        assert result.downloaded == 1
        assert len(remote.content_paths()) == 2


class TestDeletions:
    """Tests for deletion propagation."""

    def test_safe_delete_propagation(self, engine, remote):
        """Test a local deletion removes an unchanged remote file."""
        seed_ledger(engine, {"gone.md": "content"})
        remote.write("gone.md", b"content")
        remote.write_manifest({"gone.md": compute_hash("content")})

        result = engine.sync()

        assert result.success, result.errors
        assert result.deleted_remote == 1
        assert remote.read("gone.md") is None
        assert load_ledger(engine).get_item("gone.md") is None
        assert remote.manifest() == {}

    def test_ghost_reconciliation(self, engine, remote):
        """Test a file gone on both sides is forgotten without counting."""
        seed_ledger(engine, {"x.md": "content"})

        result = engine.sync()

        assert_no_changes(result)
        assert load_ledger(engine).get_item("x.md") is None

    def test_remote_deletion_reaches_unchanged_local_file(self, make_engine):
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "a.md", "alpha")
        device_a.sync()
        device_b.sync()

        (local_root(device_a) / "a.md").unlink()
        assert device_a.sync().deleted_remote == 1
        result = device_b.sync()

        assert result.success, result.errors
        assert result.deleted_local == 1
        assert not (local_root(device_b) / "a.md").exists()
        assert load_ledger(device_b).get_item("a.md") is None

    def test_local_edit_survives_remote_deletion(self, make_engine, remote):
        """Test a file edited locally is re-uploaded after a remote deletion."""
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "a.md", "alpha")
        device_a.sync()
        device_b.sync()

        (local_root(device_a) / "a.md").unlink()
        device_a.sync()
        write_local(local_root(device_b), "a.md", "alpha, still being edited")
        result = device_b.sync()

        assert result.success, result.errors
        assert result.uploaded == 1
        assert result.deleted_local == 0
        assert remote.read("a.md") == b"alpha, still being edited"

    def test_remote_edit_beats_local_deletion(self, make_engine, remote):
        """Test a locally deleted file comes back when the remote changed."""
        device_a = make_engine("device_a")
        device_b = make_engine("device_b")
        write_local(local_root(device_a), "a.md", "alpha")
        device_a.sync()
        device_b.sync()

        write_local(local_root(device_b), "a.md", "alpha, edited on b")
        device_b.sync()
        (local_root(device_a) / "a.md").unlink()
        result = device_a.sync()

        assert result.success, result.errors
        assert result.deleted_remote == 0
        assert result.downloaded == 1
        assert (local_root(device_a) / "a.md").read_text() == "alpha, edited on b"
        assert remote.read("a.md") == b"alpha, edited on b"

    def test_filtered_file_is_not_deleted_remotely(self, make_engine, remote):
        """Test a file excluded after syncing is not treated as deleted."""
        engine = make_engine()
        write_local(local_root(engine), "drafts/a.md", "alpha")
        engine.sync()

        engine.settings.excluded_folders = [".trash", "drafts"]
        result = engine.sync()

        assert_no_changes(result)
        assert remote.read("drafts/a.md") == b"alpha"
        assert (local_root(engine) / "drafts/a.md").exists()


class TestErrors:
    """Tests for fatal and per-item failures."""

    def test_per_item_upload_error(self, engine, remote):
        """Test one failing file does not stop the others."""
        write_local(local_root(engine), "bad.md", "bad")
        write_local(local_root(engine), "good.md", "good")
        remote.fail("put", StoreError("access denied"), path="vault/bad.md")

        result = engine.sync()

        assert result.success is False
        assert result.errors == ["Upload error bad.md: access denied"]
        assert result.uploaded == 1
        assert remote.read("good.md") == b"good"
        assert load_ledger(engine).get_item("bad.md") is None

        remote.clear_failures()
        retry = engine.sync()
        assert retry.success, retry.errors
        assert retry.uploaded == 1

    def test_remote_unreachable(self, engine, remote):
        write_local(local_root(engine), "a.md", "alpha")
        remote.fail("mkdir", StoreError("connection refused"))

        result = engine.sync()

        assert result.success is False
        assert len(result.errors) == 1
        assert "connection refused" in result.errors[0]
        assert not engine.settings.ledger_path.exists()
        assert remote.content_paths() == set()

    def test_listing_failure_skips_persistence(self, engine, remote):
        """Test a failed remote listing aborts without saving state."""
        write_local(local_root(engine), "a.md", "alpha")
        remote.fail("list_recursive", StoreError("timeout"))

        result = engine.sync()

        assert result.success is False
        assert result.errors == ["timeout"]
        assert not engine.settings.ledger_path.exists()
        assert remote.manifest() == {}
        assert not any(".locks/sync_" in path for path in remote.files)

    def test_sync_never_raises(self, engine):
        """Test unexpected errors are returned as a failed result."""

        class ExplodingStore:
            def load(self):
                raise RuntimeError("disk on fire")

        engine.ledger_store = ExplodingStore()

        result = engine.sync()

        assert result.success is False
        assert result.errors == ["disk on fire"]


class TestLocking:
    """Tests for lock handling during a cycle."""

    def test_lock_released_after_cycle(self, engine, remote):
        write_local(local_root(engine), "a.md", "alpha")
        engine.sync()

        assert not any(".locks/sync_" in path for path in remote.files)
        assert any(op == "put" and ".locks/sync_" in path for op, path in remote.calls)

    def test_exclusive_lock_denies_cycle(self, engine, remote):
        """Test an active exclusive lock aborts the cycle."""
        now = time.time()
        lock = SyncLock("device-maintenance", "maintenance", now, now, now + 600)
        remote.write(".locks/exclusive.json", lock.to_json())
        write_local(local_root(engine), "a.md", "alpha")

        result = engine.sync()

        assert result.success is False
        assert result.errors == [LOCKED_MESSAGE]
        assert remote.content_paths() == set()
        assert not engine.settings.ledger_path.exists()

    def test_lock_io_failure_fails_open(self, engine, remote):
        write_local(local_root(engine), "a.md", "alpha")
        remote.fail("mkdir", StoreError("lock service down"), path="vault/.locks")

        result = engine.sync()

        assert result.success, result.errors
        assert result.uploaded == 1

    def test_lock_io_failure_fails_closed(self, make_engine, remote):
        engine = make_engine(lock_fail_open=False)
        write_local(local_root(engine), "a.md", "alpha")
        remote.fail("mkdir", StoreError("lock service down"), path="vault/.locks")

        result = engine.sync()

        assert result.success is False
        assert "lock service down" in result.errors[0]
        assert remote.content_paths() == set()


class TestOrchestration:
    """Tests for single-flight, cancellation, progress and full resync."""

    def test_concurrent_sync_is_rejected(self, engine):
        """Test a second sync while one runs returns a busy result."""
        inner_results = []

        def progress(message, current, total):
            if current == 4 and not inner_results:
                assert engine.is_busy
                inner_results.append(engine.sync())

        engine.progress = progress
        write_local(local_root(engine), "a.md", "alpha")

        outer = engine.sync()

        assert outer.success, outer.errors
        assert inner_results[0].success is False
        assert inner_results[0].errors == [BUSY_MESSAGE]
        assert not engine.is_busy

    def test_cancellation_leaves_ledger_untouched(self, engine, remote):
        write_local(local_root(engine), "a.md", "alpha")
        engine.sync()
        saved = engine.settings.ledger_path.read_bytes()

        def progress(message, current, total):
            if current == 4:
                engine.cancel()

        engine.progress = progress
        write_local(local_root(engine), "b.md", "beta")

        result = engine.sync()

        assert result.success is False
        assert result.errors == ["Sync cancelled"]
        assert result.uploaded == 0
        assert engine.settings.ledger_path.read_bytes() == saved
        assert remote.read("b.md") is None
        assert not any(".locks/sync_" in path for path in remote.files)

    def test_cancel_when_idle_is_harmless(self, engine):
        engine.cancel()

        assert engine.sync().success

    def test_progress_reports(self, engine):
        steps = []
        engine.progress = lambda message, current, total: steps.append(
            (message, current, total)
        )

        engine.sync()

        assert steps[0][1] == 0
        assert steps[-1] == ("Sync complete", TOTAL_STEPS, TOTAL_STEPS)
        assert [s[1] for s in steps] == sorted(s[1] for s in steps)

    def test_failing_progress_callback_is_ignored(self, engine):
        def progress(message, current, total):
            raise RuntimeError("display closed")

        engine.progress = progress
        write_local(local_root(engine), "a.md", "alpha")

        assert engine.sync().uploaded == 1

    def test_last_sync_time_and_device_id_persist(self, engine):
        before = time.time()
        engine.sync()
        ledger = load_ledger(engine)

        assert ledger.last_sync_time >= before
        engine.sync()
        assert load_ledger(engine).device_id == ledger.device_id

    def test_force_full_sync(self, engine, remote):
        """Test a full resync re-registers identical files without transfers."""
        write_local(local_root(engine), "a.md", "alpha")
        write_local(local_root(engine), "notes/b.md", "beta")
        engine.sync()
        device_id = load_ledger(engine).device_id

        result = engine.force_full_sync()

        assert_no_changes(result)
        ledger = load_ledger(engine)
        assert ledger.device_id == device_id
        assert set(ledger.paths()) == {"a.md", "notes/b.md"}

    def test_force_full_sync_when_busy(self, engine):
        results = []

        def progress(message, current, total):
            if not results:
                results.append(engine.force_full_sync())

        engine.progress = progress
        engine.sync()

        assert results[0].errors == [BUSY_MESSAGE]

    def test_force_full_sync_holds_the_engine_during_reset(self, engine, monkeypatch):
        """Test no cycle can start while the ledger is being reset."""
        write_local(local_root(engine), "a.md", "alpha")
        engine.sync()
        inner_results = []
        save = engine.ledger_store.save

        def save_and_sync(ledger):
            if not inner_results:
                inner_results.append(engine.sync())
            save(ledger)

        monkeypatch.setattr(engine.ledger_store, "save", save_and_sync)

        result = engine.force_full_sync()

        assert_no_changes(result)
        assert inner_results[0].errors == [BUSY_MESSAGE]
        assert load_ledger(engine).paths() == ["a.md"]


@pytest.mark.parametrize(
    "strategy", [ConflictStrategy.COPY, ConflictStrategy.LOCAL_WINS, ConflictStrategy.REMOTE_WINS]
)
def test_conflict_resolution_converges(make_engine, remote, strategy):
    """Test both devices agree after a conflict whatever the strategy."""
    device_a = make_engine("device_a", conflict_strategy=strategy)
    device_b = make_engine("device_b", conflict_strategy=strategy)
    write_local(local_root(device_a), "note.md", "base")
    device_a.sync()
    device_b.sync()

    write_local(local_root(device_a), "note.md", "edited on a")
    write_local(local_root(device_b), "note.md", "edited on b!")
    device_a.sync()
    assert device_b.sync().conflicts == 1
    device_a.sync()

    files_a = {p.name: p.read_bytes() for p in local_root(device_a).glob("*.md")}
    files_b = {p.name: p.read_bytes() for p in local_root(device_b).glob("*.md")}
    assert files_a == files_b
    assert_no_changes(device_a.sync())
    assert_no_changes(device_b.sync())
