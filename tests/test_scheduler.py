"""Tests for the upload scheduler."""
import asyncio
import dataclasses

import pytest

from gallery_sync.errors import InvalidTransition, UnknownTask
from gallery_sync.models import UploadStatus
from gallery_sync.registry import UploadTaskRegistry
from gallery_sync.scheduler import PERSIST_FAILED_DETAIL, UploadScheduler
from gallery_sync.synchronizer import GallerySynchronizer

from conftest import BatchObjectStore


def build(object_store, document_store, config):
    registry = UploadTaskRegistry()
    sync = GallerySynchronizer(document_store)
    scheduler = UploadScheduler(registry, object_store, sync, config)
    return registry, sync, scheduler


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_order_follows_submission_not_completion(self, object_store, document_store, config, media):
        object_store.gated = True
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg"), media("c.jpg")], "b1")

        batch = asyncio.create_task(scheduler.run_batch("b1", ids))
        await asyncio.sleep(0.01)
        for name in ("c.jpg", "b.jpg", "a.jpg"):
            object_store.release(name)
            await asyncio.sleep(0.01)
        result = await batch

        assert result.appended == (
            "https://cdn.example/gyms/a.jpg",
            "https://cdn.example/gyms/b.jpg",
            "https://cdn.example/gyms/c.jpg",
        )
        assert sync.committed == result.appended
        # One append for the whole batch
        assert len(document_store.persisted) == 1

    @pytest.mark.asyncio
    async def test_every_upload_issued_at_once(self, object_store, document_store, config, media):
        object_store.gated = True
        registry, sync, scheduler = build(object_store, document_store, config)
        names = [f"{i}.jpg" for i in range(5)]
        ids = registry.admit([media(name) for name in names], "b1")

        batch = asyncio.create_task(scheduler.run_batch("b1", ids))
        await asyncio.sleep(0.01)
        assert object_store.calls == names

        for name in names:
            object_store.release(name)
        result = await batch
        assert len(result.appended) == 5

    @pytest.mark.asyncio
    async def test_max_parallel_bounds_uploads(self, object_store, document_store, config, media):
        object_store.gated = True
        config = dataclasses.replace(config, max_parallel=2)
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media(f"{i}.jpg") for i in range(4)], "b1")

        batch = asyncio.create_task(scheduler.run_batch("b1", ids))
        await asyncio.sleep(0.01)
        assert object_store.calls == ["0.jpg", "1.jpg"]

        for i in range(4):
            object_store.release(f"{i}.jpg")
        await batch
        assert len(object_store.calls) == 4

    @pytest.mark.asyncio
    async def test_nothing_appended_before_batch_settles(self, object_store, document_store, config, media):
        object_store.gated = True
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b1")

        batch = asyncio.create_task(scheduler.run_batch("b1", ids))
        object_store.release("a.jpg")
        await asyncio.sleep(0.05)

        assert registry.get(ids[0]).status == UploadStatus.SUCCESS
        assert registry.get(ids[1]).status == UploadStatus.UPLOADING
        assert sync.committed == ()

        object_store.release("b.jpg")
        await batch
        assert len(sync.committed) == 2

    @pytest.mark.asyncio
    async def test_partial_failure(self, object_store, document_store, config, media):
        object_store.failures.add("b.jpg")
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg"), media("c.jpg")], "b1")

        result = await scheduler.run_batch("b1", ids)

        assert result.failed == (ids[1],)
        assert sync.committed == (
            "https://cdn.example/gyms/a.jpg",
            "https://cdn.example/gyms/c.jpg",
        )
        failed = registry.get(ids[1])
        assert failed.status == UploadStatus.ERROR
        assert "b.jpg" in failed.error
        assert failed.progress == 0

    @pytest.mark.asyncio
    async def test_all_failed_skips_append(self, object_store, document_store, config, media):
        object_store.failures.update({"a.jpg", "b.jpg"})
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b1")

        result = await scheduler.run_batch("b1", ids)
        assert result.appended == ()
        assert document_store.persisted == []

    @pytest.mark.asyncio
    async def test_persist_failure_marks_uploads_failed(self, object_store, document_store, config, media):
        document_store.fail = True
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b1")

        result = await scheduler.run_batch("b1", ids)

        assert result.committed is False
        assert result.persist_error
        assert result.failed == tuple(ids)
        assert sync.committed == ()
        for task_id in ids:
            task = registry.get(task_id)
            assert task.status == UploadStatus.ERROR
            assert task.error.startswith(PERSIST_FAILED_DETAIL)
            assert task.result_url is None

    @pytest.mark.asyncio
    async def test_concurrent_batches_do_not_lose_items(self, object_store, document_store, config, media):
        registry, sync, scheduler = build(object_store, document_store, config)
        first = registry.admit([media("a.jpg"), media("b.jpg")], "b1")
        second = registry.admit([media("c.jpg"), media("d.jpg")], "b2")

        await asyncio.gather(
            scheduler.run_batch("b1", first),
            scheduler.run_batch("b2", second),
        )

        assert len(sync.committed) == 4
        assert len(set(sync.committed)) == 4
        assert sync.committed.index("https://cdn.example/gyms/a.jpg") < sync.committed.index("https://cdn.example/gyms/b.jpg")
        assert sync.committed.index("https://cdn.example/gyms/c.jpg") < sync.committed.index("https://cdn.example/gyms/d.jpg")

    @pytest.mark.asyncio
    async def test_batch_store_used_for_multiple_files(self, document_store, config, media):
        store = BatchObjectStore()
        registry, sync, scheduler = build(store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b1")

        await scheduler.run_batch("b1", ids)
        assert store.batches == [["a.jpg", "b.jpg"]]
        assert store.calls == []
        assert len(sync.committed) == 2

    @pytest.mark.asyncio
    async def test_batch_store_failure_fails_every_task(self, document_store, config, media):
        store = BatchObjectStore(fail=True)
        registry, sync, scheduler = build(store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b1")

        result = await scheduler.run_batch("b1", ids)
        assert result.failed == tuple(ids)
        assert all(registry.get(t).error == "batch rejected" for t in ids)

    @pytest.mark.asyncio
    async def test_single_file_bypasses_batch_call(self, document_store, config, media):
        store = BatchObjectStore()
        registry, sync, scheduler = build(store, document_store, config)
        ids = registry.admit([media("a.jpg")], "b1")

        await scheduler.run_batch("b1", ids)
        assert store.batches == []
        assert store.calls == ["a.jpg"]


class TestRetryAndDismiss:
    @pytest.mark.asyncio
    async def test_retry_failed_task(self, object_store, document_store, config, media):
        object_store.failures.add("a.jpg")
        registry, sync, scheduler = build(object_store, document_store, config)
        [task_id] = registry.admit([media("a.jpg")], "b1")
        await scheduler.run_batch("b1", [task_id])

        object_store.failures.clear()
        batch_id = scheduler.reset_for_retry(task_id)
        task = registry.get(task_id)
        assert batch_id == "b1"
        assert task.status == UploadStatus.PENDING
        assert task.progress == 0
        assert task.error is None

        result = await scheduler.run_batch(batch_id, [task_id])
        assert result.all_success
        assert sync.committed == ("https://cdn.example/gyms/a.jpg",)

    @pytest.mark.asyncio
    async def test_retry_rejects_successful_task(self, object_store, document_store, config, media):
        registry, sync, scheduler = build(object_store, document_store, config)
        [task_id] = registry.admit([media("a.jpg")], "b1")
        await scheduler.run_batch("b1", [task_id])

        with pytest.raises(InvalidTransition):
            await scheduler.retry(task_id)

    @pytest.mark.asyncio
    async def test_dismiss_in_flight_task_refused(self, object_store, document_store, config, media):
        object_store.gated = True
        registry, sync, scheduler = build(object_store, document_store, config)
        [task_id] = registry.admit([media("a.jpg")], "b1")
        batch = asyncio.create_task(scheduler.run_batch("b1", [task_id]))
        await asyncio.sleep(0.01)

        with pytest.raises(InvalidTransition):
            scheduler.dismiss(task_id)

        object_store.release("a.jpg")
        await batch
        scheduler.dismiss(task_id)
        assert task_id not in registry

    def test_dismiss_unknown(self, object_store, document_store, config):
        _, _, scheduler = build(object_store, document_store, config)
        with pytest.raises(UnknownTask):
            scheduler.dismiss("missing")

    @pytest.mark.asyncio
    async def test_clear_completed_keeps_in_flight(self, object_store, document_store, config, media):
        object_store.failures.add("b.jpg")
        registry, sync, scheduler = build(object_store, document_store, config)
        done = registry.admit([media("a.jpg"), media("b.jpg")], "b1")
        await scheduler.run_batch("b1", done)
        pending = registry.admit([media("c.jpg")], "b2")

        assert scheduler.clear_completed() == 2
        assert [t.id for t in registry.snapshot()] == pending


    @pytest.mark.asyncio
    async def test_uploads_kept_until_saved(self, object_store, document_store, config, media):
        registry, sync, scheduler = build(object_store, document_store, config)
        [task_id] = registry.admit([media("a.jpg")], "b1")
        document_store.gate = asyncio.Event()

        batch = asyncio.create_task(scheduler.run_batch("b1", [task_id]))
        await asyncio.sleep(0.01)
        assert registry.get(task_id).status == UploadStatus.SUCCESS
        assert scheduler.awaiting_commit() == 1

        assert scheduler.clear_completed() == 0
        with pytest.raises(InvalidTransition):
            scheduler.dismiss(task_id)

        document_store.fail = True
        document_store.gate.set()
        await batch

        task = registry.get(task_id)
        assert task.status == UploadStatus.ERROR
        assert task.error.startswith(PERSIST_FAILED_DETAIL)
        assert scheduler.awaiting_commit() == 0

    @pytest.mark.asyncio
    async def test_awaiting_commit_released_after_save(self, object_store, document_store, config, media):
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b1")
        await scheduler.run_batch("b1", ids)

        assert scheduler.awaiting_commit() == 0
        assert scheduler.clear_completed() == 2


class TestAutoDismiss:
    @pytest.mark.asyncio
    async def test_successful_tasks_pruned_after_delay(self, object_store, document_store, config, media):
        object_store.failures.add("b.jpg")
        config = dataclasses.replace(config, auto_dismiss_delay=0.05)
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg"), media("b.jpg")], "b1")

        await scheduler.run_batch("b1", ids)
        assert len(registry) == 2
        await asyncio.sleep(0.1)

        assert ids[0] not in registry
        assert registry.get(ids[1]).status == UploadStatus.ERROR
        await scheduler.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_prune(self, object_store, document_store, config, media):
        config = dataclasses.replace(config, auto_dismiss_delay=10)
        registry, sync, scheduler = build(object_store, document_store, config)
        ids = registry.admit([media("a.jpg")], "b1")
        await scheduler.run_batch("b1", ids)

        await scheduler.close()
        assert ids[0] in registry
