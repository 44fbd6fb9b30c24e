"""Batched, paced, bounded-concurrency transfer of assets to object storage."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .asset_utils import calculate_storage_key
from .batching import plan_batches
from .error_handling import BatchOperationContextManager, retry_storage_operation
from .exceptions import PerAssetUploadError, StorageError, StorageUnavailableError
from .models import AssetItem, PipelineSettings, UploadOutcome, UploadSummary
from .observability import LogContext, MetricsCollector, StructuredLogger
from .protocols import AssetStorage, LoggerProtocol


@dataclass
class BatchProgress:
    """Running totals reported after every batch."""

    batch_index: int
    batch_count: int
    uploaded: int
    processed: int
    total: int
    failures: List[UploadOutcome] = field(default_factory=list)

    @property
    def percentage(self) -> float:
        return 100.0 * self.uploaded / self.total if self.total else 100.0


BatchCallback = Callable[[BatchProgress], Any]


class BatchUploadCoordinator:
    """
    Uploads assets batch by batch.

    Items inside a batch are transferred concurrently, so concurrency never
    exceeds the batch size. Batches run strictly one after the other with a
    pacing delay in between (not after the last one). A failed item is
    recorded and the run goes on; only a transport that is unusable as a
    whole aborts it.
    """

    def __init__(
        self,
        storage: AssetStorage,
        settings: PipelineSettings,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._storage = storage
        self._settings = settings
        self._logger = logger or StructuredLogger("uploader")
        self._metrics_collector = metrics_collector
        self._sleep = sleep
        self._upload = retry_storage_operation(
            max_attempts=settings.upload_retry_attempts,
            initial_delay=settings.upload_retry_delay_seconds,
            sleep=sleep,
        )(storage.upload)

    async def _upload_one(
        self,
        asset: AssetItem,
        key: str,
        batch_index: int,
        log_context: LogContext,
    ) -> UploadOutcome:
        item_context = log_context.with_metadata(item=asset.name, batch=batch_index)
        start_time = time.time()
        try:
            self._logger.debug("Uploading asset", item_context, key=key)
            stored_key = await self._upload(key, asset.data, asset.content_type)
        except StorageUnavailableError:
            raise
        except Exception as e:  # noqa: BLE001
            error = PerAssetUploadError(str(e), asset_name=asset.name, batch_index=batch_index)
            self._logger.error(
                "Asset upload failed", item_context.with_metadata(error=str(error))
            )
            if self._metrics_collector:
                self._metrics_collector.record(
                    "upload_asset",
                    start_time,
                    False,
                    str(e),
                    item=asset.name,
                    run=log_context.correlation_id,
                )
            return UploadOutcome(
                name=asset.name,
                succeeded=False,
                error=str(error),
                batch_index=batch_index,
                size=asset.size,
            )

        if self._metrics_collector:
            self._metrics_collector.record(
                "upload_asset",
                start_time,
                True,
                item=asset.name,
                run=log_context.correlation_id,
            )
        return UploadOutcome(
            name=asset.name,
            stored_path=stored_key,
            succeeded=True,
            batch_index=batch_index,
            size=asset.size,
        )

    async def upload_all(
        self,
        assets: Sequence[AssetItem],
        owner_id: str,
        target_id: str,
        on_batch: Optional[BatchCallback] = None,
        log_context: Optional[LogContext] = None,
    ) -> UploadSummary:
        """
        Transfer every asset to ``{owner_id}/{target_id}/{name}``.

        Args:
            assets: Classified assets, in any order.
            owner_id: Owner of the target resource.
            target_id: Target resource identifier.
            on_batch: Called (and awaited if it returns an awaitable) after
                each batch with the running totals.
            log_context: Context carried into every per-item log line.

        Returns:
            Per-item outcomes in upload order.

        Raises:
            StorageUnavailableError: If the storage transport is unusable.
        """
        batches = plan_batches(assets, self._settings)
        total = sum(len(batch) for batch in batches)
        log_context = (log_context or LogContext(component="uploader")).with_operation(
            "upload_assets"
        )
        log_context.resource_id = target_id

        summary = UploadSummary(total=total, batch_sizes=[len(b) for b in batches])
        uploaded = 0

        self._logger.info(
            f"Uploading {total} assets in {len(batches)} batches",
            log_context,
            strategy=self._settings.batch_strategy,
        )

        with BatchOperationContextManager(
            operation_name=f"Asset upload for {owner_id}/{target_id}"
        ) as batch_manager:
            for batch_index, batch in enumerate(batches):
                results = await asyncio.gather(
                    *[
                        self._upload_one(
                            asset,
                            calculate_storage_key(owner_id, target_id, asset.name),
                            batch_index,
                            log_context,
                        )
                        for asset in batch
                    ],
                    return_exceptions=True,
                )

                batch_failures: List[UploadOutcome] = []
                fatal: Optional[BaseException] = None
                for asset, result in zip(batch, results):
                    if isinstance(result, StorageUnavailableError):
                        fatal = fatal or result
                        result = UploadOutcome(
                            name=asset.name,
                            error=str(result),
                            batch_index=batch_index,
                            size=asset.size,
                        )
                    elif isinstance(result, BaseException):
                        if isinstance(result, asyncio.CancelledError):
                            raise result
                        result = UploadOutcome(
                            name=asset.name,
                            error=str(result),
                            batch_index=batch_index,
                            size=asset.size,
                        )

                    summary.outcomes.append(result)
                    if result.succeeded:
                        uploaded += 1
                    else:
                        batch_failures.append(result)
                        batch_manager.add_error(
                            result.error or "Unknown error",
                            item_identifier=result.name,
                            batch_index=batch_index,
                        )

                if fatal is not None:
                    self._logger.error(
                        "Storage transport unavailable; aborting upload",
                        log_context.with_metadata(batch=batch_index, error=str(fatal)),
                    )
                    raise fatal

                progress = BatchProgress(
                    batch_index=batch_index,
                    batch_count=len(batches),
                    uploaded=uploaded,
                    processed=len(summary.outcomes),
                    total=total,
                    failures=batch_failures,
                )
                self._logger.info(
                    f"Batch {batch_index + 1}/{len(batches)} done: "
                    f"{uploaded}/{total} uploaded ({progress.percentage:.1f}%)",
                    log_context,
                    failed=len(batch_failures),
                )
                if on_batch is not None:
                    maybe_awaitable = on_batch(progress)
                    if asyncio.iscoroutine(maybe_awaitable):
                        await maybe_awaitable

                if batch_index < len(batches) - 1:
                    await self._sleep(self._settings.batch_delay_seconds)

        return summary


async def delete_uploaded(storage: AssetStorage, keys: Sequence[str]) -> None:
    """Best-effort removal of already stored keys."""
    if not keys:
        return
    try:
        await storage.delete(list(keys))
    except StorageError as e:
        StructuredLogger("uploader").error(
            "Could not delete uploaded assets", keys=len(keys), error=str(e)
        )
