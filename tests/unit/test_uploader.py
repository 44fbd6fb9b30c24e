"""Unit tests for BatchUploadCoordinator."""

import asyncio

import pytest

from bundle_pipeline.core.exceptions import StorageUnavailableError
from bundle_pipeline.core.models import AssetItem, PipelineSettings
from bundle_pipeline.core.observability import MetricsCollector
from bundle_pipeline.core.uploader import BatchUploadCoordinator, delete_uploaded
from bundle_pipeline.testing import FakeLogger, FakeStorage, SleepRecorder


def _assets(count):
    return [AssetItem(name=f"img_{i}.png", data=b"x" * (i + 1)) for i in range(count)]


def _coordinator(storage, sleep=None, **overrides):
    settings = PipelineSettings(batch_delay_seconds=0.3, upload_retry_delay_seconds=0.01, **overrides)
    return BatchUploadCoordinator(
        storage, settings, logger=FakeLogger(), sleep=sleep or SleepRecorder()
    )


class TestBatchUploadCoordinator:
    def test_uploads_every_asset_under_owner_and_target(self):
        storage = FakeStorage()
        summary = asyncio.run(_coordinator(storage).upload_all(_assets(5), "admin-1", "prod-9"))

        assert summary.success_count == 5
        assert summary.error_count == 0
        assert storage.keys() == [f"admin-1/prod-9/img_{i}.png" for i in range(5)]
        assert summary.batch_sizes == [3, 2]

    def test_concurrency_bounded_by_batch_size(self):
        storage = FakeStorage()
        asyncio.run(_coordinator(storage, batch_size=3).upload_all(_assets(7), "o", "p"))

        assert storage.max_in_flight == 3

    def test_pacing_between_batches_only(self):
        storage = FakeStorage()
        sleep = SleepRecorder()
        summary = asyncio.run(_coordinator(storage, sleep).upload_all(_assets(7), "o", "p"))

        assert summary.batch_sizes == [3, 3, 1]
        assert sleep.delays == [0.3, 0.3]

    def test_no_pacing_for_single_batch(self):
        sleep = SleepRecorder()
        asyncio.run(_coordinator(FakeStorage(), sleep).upload_all(_assets(2), "o", "p"))
        assert sleep.delays == []

    def test_per_item_failure_does_not_stop_run(self):
        storage = FakeStorage()
        storage.fail_uploads_for("img_4.png")
        batches = []

        summary = asyncio.run(
            _coordinator(storage).upload_all(_assets(7), "o", "p", on_batch=batches.append)
        )

        assert summary.success_count == 6
        assert summary.error_count == 1
        failed = [o for o in summary.outcomes if not o.succeeded]
        assert failed[0].name == "img_4.png"
        assert failed[0].batch_index == 1
        assert [b.uploaded for b in batches] == [3, 5, 6]
        assert [f.name for f in batches[1].failures] == ["img_4.png"]
        assert "o/p/img_4.png" not in storage.objects

    def test_async_batch_callback_is_awaited(self):
        seen = []

        async def on_batch(progress):
            await asyncio.sleep(0)
            seen.append(progress.processed)

        asyncio.run(_coordinator(FakeStorage()).upload_all(_assets(4), "o", "p", on_batch=on_batch))
        assert seen == [3, 4]

    def test_throttled_upload_is_retried(self):
        storage = FakeStorage()
        storage.throttle("img_1.png", times=2)

        summary = asyncio.run(_coordinator(storage).upload_all(_assets(3), "o", "p"))

        assert summary.success_count == 3
        assert storage.upload_calls.count("o/p/img_1.png") == 3

    def test_unavailable_storage_aborts(self):
        storage = FakeStorage()
        storage.set_unavailable()

        with pytest.raises(StorageUnavailableError):
            asyncio.run(_coordinator(storage).upload_all(_assets(4), "o", "p"))
        # The first batch was attempted, the second never started.
        assert len(storage.upload_calls) == 3

    def test_cover_is_first_successful_in_order(self):
        storage = FakeStorage()
        storage.fail_uploads_for("img_0.png")
        summary = asyncio.run(_coordinator(storage).upload_all(_assets(3), "o", "p"))
        assert summary.cover_path == "o/p/img_1.png"

    def test_empty_asset_list(self):
        sleep = SleepRecorder()
        summary = asyncio.run(_coordinator(FakeStorage(), sleep).upload_all([], "o", "p"))
        assert summary.total == 0
        assert summary.outcomes == []
        assert sleep.delays == []

    def test_metrics_recorded_per_asset(self):
        storage = FakeStorage()
        storage.fail_uploads_for("img_2.png")
        metrics = MetricsCollector()
        coordinator = BatchUploadCoordinator(
            storage, PipelineSettings(), metrics_collector=metrics, sleep=SleepRecorder()
        )

        asyncio.run(coordinator.upload_all(_assets(3), "o", "p"))

        summary = metrics.get_summary("upload_asset")
        assert summary["total_operations"] == 3
        assert summary["failed_operations"] == 1

    def test_per_item_log_lines_carry_item_and_batch(self):
        storage = FakeStorage()
        storage.fail_uploads_for("img_1.png")
        logger = FakeLogger()
        coordinator = BatchUploadCoordinator(
            storage, PipelineSettings(), logger=logger, sleep=SleepRecorder()
        )

        asyncio.run(coordinator.upload_all(_assets(2), "o", "p"))

        errors = logger.get_logs("ERROR")
        assert errors[0]["item"] == "img_1.png"
        assert errors[0]["batch"] == 0


class TestDeleteUploaded:
    def test_deletes_keys(self):
        storage = FakeStorage()
        asyncio.run(storage.upload("o/p/a.png", b"x", "image/png"))
        asyncio.run(delete_uploaded(storage, ["o/p/a.png"]))
        assert storage.keys() == []

    def test_failure_is_swallowed_and_logged(self):
        storage = FakeStorage()
        storage.delete_should_fail = True
        asyncio.run(delete_uploaded(storage, ["o/p/a.png"]))
        assert storage.delete_calls == [["o/p/a.png"]]

    def test_nothing_to_delete(self):
        storage = FakeStorage()
        asyncio.run(delete_uploaded(storage, []))
        assert storage.delete_calls == []
