"""Tests for the upload task registry."""
import pytest

from gallery_sync.errors import InvalidTransition, UnknownTask
from gallery_sync.models import UploadStatus
from gallery_sync.registry import UploadTaskRegistry


@pytest.fixture
def registry():
    return UploadTaskRegistry()


class TestAdmit:
    def test_admit_preserves_order(self, registry, media):
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "batch1")

        tasks = registry.snapshot()
        assert [t.id for t in tasks] == ids
        assert [t.filename for t in tasks] == ["a.jpg", "b.jpg"]
        assert all(t.status == UploadStatus.PENDING for t in tasks)
        assert all(t.batch_id == "batch1" for t in tasks)
        assert len(set(ids)) == 2

    def test_admit_with_previews(self, registry, media):
        ids = registry.admit([media("a.jpg")], "b", previews=["data:x"])
        assert registry.get(ids[0]).preview == "data:x"

    def test_previews_must_match(self, registry, media):
        with pytest.raises(ValueError):
            registry.admit([media("a.jpg")], "b", previews=[])

    def test_subscribers_receive_snapshot(self, registry, media):
        seen = []
        registry.subscribe(seen.append)
        registry.admit([media("a.jpg")], "b")
        assert len(seen) == 1
        assert seen[0][0].filename == "a.jpg"

    def test_snapshot_is_a_copy(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        registry.snapshot()[0].progress = 55
        assert registry.get(task_id).progress == 0


class TestUpdate:
    def test_lifecycle(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")

        assert registry.update(task_id, status=UploadStatus.UPLOADING, progress=10)
        assert registry.update(task_id, status=UploadStatus.SUCCESS, progress=100, result_url="https://x/a.jpg")

        task = registry.get(task_id)
        assert task.status == UploadStatus.SUCCESS
        assert task.result_url == "https://x/a.jpg"
        assert task.progress == 100

    def test_illegal_transition(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        with pytest.raises(InvalidTransition):
            registry.update(task_id, status=UploadStatus.SUCCESS, result_url="u")

    def test_success_requires_url(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        registry.update(task_id, status=UploadStatus.UPLOADING)
        with pytest.raises(InvalidTransition):
            registry.update(task_id, status=UploadStatus.SUCCESS)

    def test_progress_is_clamped_and_monotonic(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        registry.update(task_id, status=UploadStatus.UPLOADING, progress=150)
        assert registry.get(task_id).progress == 100

        [other] = registry.admit([media("b.jpg")], "b")
        registry.update(other, status=UploadStatus.UPLOADING, progress=40)
        registry.update(other, progress=20)
        assert registry.get(other).progress == 40

    def test_error_clears_url_and_progress(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        registry.update(task_id, status=UploadStatus.UPLOADING, progress=50)
        registry.update(task_id, status=UploadStatus.SUCCESS, progress=100, result_url="u")
        registry.update(task_id, status=UploadStatus.ERROR, error="not saved")

        task = registry.get(task_id)
        assert task.result_url is None
        assert task.progress == 0
        assert task.error == "not saved"

    def test_update_removed_task_is_ignored(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        registry.remove(task_id)
        assert registry.update(task_id, progress=50) is False

    def test_identity_fields_are_read_only(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        with pytest.raises(ValueError):
            registry.update(task_id, batch_id="other")


class TestReset:
    def test_reset_failed_task(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        registry.update(task_id, status=UploadStatus.UPLOADING, progress=60)
        registry.update(task_id, status=UploadStatus.ERROR, error="boom", progress=60)

        registry.reset(task_id)
        task = registry.get(task_id)
        assert task.status == UploadStatus.PENDING
        assert task.progress == 0
        assert task.error is None

    def test_reset_requires_error(self, registry, media):
        [task_id] = registry.admit([media("a.jpg")], "b")
        with pytest.raises(InvalidTransition):
            registry.reset(task_id)

    def test_reset_unknown(self, registry):
        with pytest.raises(UnknownTask):
            registry.reset("missing")


class TestRemove:
    def test_remove_where(self, registry, media):
        ids = registry.admit([media("a.jpg"), media("b.jpg"), media("c.jpg")], "b")
        registry.update(ids[0], status=UploadStatus.UPLOADING)
        registry.update(ids[0], status=UploadStatus.ERROR, error="x")

        removed = registry.remove_where(lambda t: t.is_terminal)
        assert removed == 1
        assert ids[0] not in registry
        assert len(registry) == 2
        assert registry.in_flight_count() == 2

    def test_remove_many(self, registry, media):
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b")
        assert registry.remove_many(ids) == 2
        assert len(registry) == 0
