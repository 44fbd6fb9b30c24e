"""Core components shared by the bundle pipeline."""

from .logging_config import get_logger, setup_logger
from .exceptions import (
    AuthError,
    BundlePipelineError,
    ConfigurationError,
    CorruptArchive,
    MissingAssets,
    MissingConfiguration,
    OrchestrationError,
    PerAssetUploadError,
    PersistenceError,
    StorageError,
    StorageUnavailableError,
    ValidationError,
    with_error_handling,
)
from .models import (
    AssetItem,
    IngestionResult,
    PipelineSettings,
    ProductRecord,
    ProjectCreationRequest,
    ProjectCreationResult,
    ProjectRecord,
    UploadOutcome,
    UploadSummary,
    ViewRecord,
)
from .archive import extract_archive, validate_archive
from .classifier import AssetClassifier, ClassifiedBundle
from .config_parser import ConfigurationMap, parse_configuration
from .progress import (
    CompleteEvent,
    ErrorEvent,
    ProgressChannel,
    ProgressPhase,
    ProgressTracker,
    ProgressUpdate,
    parse_event,
)
from .sse import SSEDecoder, encode_event
from .uploader import BatchUploadCoordinator
from .pipeline import IngestionPipeline
from .orchestrator import ResourceOrchestrator

__all__ = [
    "setup_logger",
    "get_logger",
    "BundlePipelineError",
    "ValidationError",
    "AuthError",
    "ConfigurationError",
    "CorruptArchive",
    "MissingConfiguration",
    "MissingAssets",
    "StorageError",
    "StorageUnavailableError",
    "PerAssetUploadError",
    "PersistenceError",
    "OrchestrationError",
    "with_error_handling",
    "PipelineSettings",
    "AssetItem",
    "UploadOutcome",
    "UploadSummary",
    "IngestionResult",
    "ProjectRecord",
    "ProductRecord",
    "ViewRecord",
    "ProjectCreationRequest",
    "ProjectCreationResult",
    "extract_archive",
    "validate_archive",
    "AssetClassifier",
    "ClassifiedBundle",
    "ConfigurationMap",
    "parse_configuration",
    "ProgressPhase",
    "ProgressUpdate",
    "CompleteEvent",
    "ErrorEvent",
    "ProgressChannel",
    "ProgressTracker",
    "parse_event",
    "SSEDecoder",
    "encode_event",
    "BatchUploadCoordinator",
    "IngestionPipeline",
    "ResourceOrchestrator",
]
