"""The ingestion run: archive in, assets stored, target resource finalized."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set, Tuple

from .archive import extract_archive, validate_archive
from .asset_utils import bytes_to_mb, calculate_storage_prefix
from .classifier import AssetClassifier
from .config_parser import parse_configuration
from .exceptions import BundlePipelineError, MissingAssets, PersistenceError
from .models import IngestionResult, PipelineSettings, ProductUpdate
from .observability import LogContext, MetricsCollector, StructuredLogger
from .progress import ProgressChannel, ProgressPhase, ProgressTracker
from .protocols import AssetStorage, LoggerProtocol
from .resources import ProductService
from .uploader import BatchProgress, BatchUploadCoordinator, delete_uploaded

# Strong references to runs whose consumer may have disconnected.
_BACKGROUND_RUNS: Set[asyncio.Task] = set()


class IngestionPipeline:
    """
    Extract, classify, parse, upload and finalize one bundle.

    Every run reports through a ``ProgressTracker`` and ends with exactly one
    ``complete`` or ``error`` event.
    """

    def __init__(
        self,
        storage: AssetStorage,
        products: ProductService,
        settings: Optional[PipelineSettings] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._storage = storage
        self._products = products
        self._settings = settings or PipelineSettings()
        self._logger = logger or StructuredLogger("pipeline")
        self._metrics_collector = metrics_collector
        self._classifier = AssetClassifier.from_settings(self._settings)
        self._coordinator = BatchUploadCoordinator(
            storage,
            self._settings,
            logger=logger,
            metrics_collector=metrics_collector,
            sleep=sleep,
        )

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    async def run(
        self,
        data: bytes,
        owner_id: str,
        target_id: str,
        tracker: Optional[ProgressTracker] = None,
    ) -> IngestionResult:
        """
        Run the whole ingestion for one target resource.

        Raises:
            BundlePipelineError: Any structural failure, after the terminal
                error event has been emitted.
        """
        tracker = tracker or ProgressTracker()
        context = LogContext(
            operation="ingest", component="pipeline", resource_id=target_id
        ).with_metadata(owner=owner_id)
        try:
            return await self._run(data, owner_id, target_id, tracker, context)
        except BundlePipelineError as e:
            self._logger.error("Ingestion failed", context, error=str(e))
            tracker.fail(str(e) or type(e).__name__)
            raise
        except Exception as e:
            self._logger.error("Unexpected ingestion failure", context, error=repr(e))
            tracker.fail(str(e) or "Error processing file")
            raise
        finally:
            self._log_upload_metrics(context)

    def _log_upload_metrics(self, context: LogContext) -> None:
        """Log this run's upload statistics and drop them from the collector."""
        if self._metrics_collector is None:
            return
        run_id = context.correlation_id
        summary = self._metrics_collector.get_summary("upload_asset", run=run_id)
        self._metrics_collector.clear_metrics(run=run_id)
        if not summary:
            return
        self._logger.info(
            "Upload metrics",
            context,
            uploads=summary["total_operations"],
            succeeded=summary["successful_operations"],
            failed=summary["failed_operations"],
            avg_ms=round(summary["avg_duration"] * 1000, 1),
            max_ms=round(summary["max_duration"] * 1000, 1),
        )

    async def _run(
        self,
        data: bytes,
        owner_id: str,
        target_id: str,
        tracker: ProgressTracker,
        context: LogContext,
    ) -> IngestionResult:
        await asyncio.to_thread(validate_archive, data)

        tracker.advance(ProgressPhase.EXTRACTING, "Extracting files...")
        entries = await asyncio.to_thread(extract_archive, data)
        bundle = self._classifier.classify(entries)
        constants = parse_configuration(bundle.configuration_text).as_dict()
        total = len(bundle.assets)

        if total == 0:
            if self._settings.require_assets:
                raise MissingAssets("The archive contains no transferable images")
            self._logger.warning("Bundle has no assets", context)

        tracker.advance(
            ProgressPhase.EXTRACTED, f"{total} images extracted", uploaded=0, total=total
        )
        self._logger.info(
            "Bundle extracted", context, assets=total, constants=len(constants)
        )

        tracker.advance(
            ProgressPhase.UPLOADING_IMAGES,
            "Starting image upload...",
            uploaded=0,
            total=total,
        )

        def report_batch(progress: BatchProgress) -> None:
            for failure in progress.failures:
                tracker.advance(
                    ProgressPhase.UPLOADING_IMAGES,
                    f"Error uploading {failure.name}: {failure.error}",
                    uploaded=progress.uploaded,
                    total=progress.total,
                    file_name=failure.name,
                )
            tracker.advance(
                ProgressPhase.UPLOADING_IMAGES,
                f"Batch {progress.batch_index + 1}/{progress.batch_count} completed: "
                f"{progress.uploaded}/{progress.total} images",
                uploaded=progress.uploaded,
                total=progress.total,
            )

        summary = await self._coordinator.upload_all(
            bundle.assets, owner_id, target_id, on_batch=report_batch, log_context=context
        )

        tracker.advance(
            ProgressPhase.IMAGES_UPLOADED,
            "All images uploaded",
            uploaded=summary.success_count,
            total=total,
        )

        storage_path = calculate_storage_prefix(owner_id, target_id)
        cover_url = None
        if summary.cover_path:
            cover_url = self._storage.public_url(summary.cover_path)
            storage_path = cover_url.rsplit("/", 1)[0]
        else:
            self._logger.warning("No uploaded image to use as cover", context)

        total_size_mb = bytes_to_mb(bundle.total_bytes)

        tracker.advance(ProgressPhase.UPDATING_PRODUCT, "Updating product information...")
        try:
            await self._products.finalize(
                target_id,
                ProductUpdate(
                    configuration=constants,
                    storage_path=storage_path,
                    cover_asset_url=cover_url,
                    aggregate_size_mb=total_size_mb,
                ),
            )
        except PersistenceError:
            if self._settings.cleanup_on_persistence_failure:
                self._logger.warning(
                    "Removing uploaded assets after failed update",
                    context,
                    assets=len(summary.uploaded_paths),
                )
                await delete_uploaded(self._storage, summary.uploaded_paths)
            raise

        result = IngestionResult(
            constants=constants,
            uploaded_asset_paths=summary.uploaded_paths,
            asset_count=total,
            storage_path=storage_path,
            cover_asset_url=cover_url,
            total_size_mb=total_size_mb,
            errors=[f"{o.name}: {o.error}" for o in summary.outcomes if not o.succeeded],
        )
        tracker.complete(
            message="Processing complete",
            constants=result.constants,
            uploaded_images=result.uploaded_asset_paths,
            image_count=result.asset_count,
            storage_path=result.storage_path,
            cover_image=result.cover_asset_url,
            total_size_mb=round(total_size_mb, 2),
        )
        self._logger.info(
            "Ingestion complete",
            context,
            uploaded=summary.success_count,
            failed=summary.error_count,
        )
        return result

    def start_stream(
        self, data: bytes, owner_id: str, target_id: str
    ) -> Tuple[ProgressChannel, asyncio.Task]:
        """
        Start a run in the background and hand back its event channel.

        The run keeps going if the consumer stops reading; its outcome is
        still persisted and logged.
        """
        channel = ProgressChannel()
        tracker = ProgressTracker(channel)

        async def _background() -> Optional[IngestionResult]:
            try:
                return await self.run(data, owner_id, target_id, tracker)
            except Exception:  # noqa: BLE001
                # Already logged and reported as the terminal error event.
                return None

        task = asyncio.create_task(_background())
        _BACKGROUND_RUNS.add(task)
        task.add_done_callback(_BACKGROUND_RUNS.discard)
        return channel, task
