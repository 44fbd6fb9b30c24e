"""Shared data models for the bundle pipeline."""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError

ENV_PREFIX = "BUNDLE_PIPELINE_"

DEFAULT_EXCLUDED_PREFIXES = [
    "instructions",
    "GoFixedSizeIcon",
    "GoFullScreenIcon",
    "80X80",
    "ks_logo",
]


def _split_csv(value: str) -> List[str]:
    """Split a comma-separated string into a list."""
    return [item.strip() for item in value.split(",") if item.strip()]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineSettings(BaseModel):
    """Configuration for ingestion runs, storage and the HTTP surface."""

    storage_bucket: str = "files"
    storage_endpoint_url: Optional[str] = None
    storage_region: Optional[str] = None
    public_base_url: Optional[str] = None

    batch_strategy: Literal["count", "size"] = "count"
    batch_size: int = Field(default=3, ge=1)
    max_batch_bytes: int = Field(default=512 * 1024, ge=1)
    batch_delay_seconds: float = Field(default=0.3, ge=0)
    upload_retry_attempts: int = Field(default=3, ge=1)
    upload_retry_delay_seconds: float = Field(default=0.5, ge=0)

    config_document_extension: str = ".html"
    reserved_document_prefix: str = "instructions"
    image_extensions: List[str] = Field(
        default_factory=lambda: [".png", ".jpg", ".jpeg"]
    )
    excluded_prefixes: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_PREFIXES)
    )
    require_assets: bool = False
    cleanup_on_persistence_failure: bool = False

    database_url: str = "sqlite:///bundle_pipeline.db"
    api_tokens: List[str] = Field(default_factory=list)
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        """
        Build settings from ``BUNDLE_PIPELINE_*`` environment variables.

        List fields take comma-separated values. Unset variables keep their
        defaults.

        Raises:
            ConfigurationError: If a variable holds an invalid value.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for name, field in cls.model_fields.items():
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if field.annotation == List[str]:
                values[name] = _split_csv(raw)
            else:
                values[name] = raw

        try:
            return cls(**values)
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Invalid settings: {exc}") from exc


class AssetItem(BaseModel):
    """A transferable binary asset taken from a bundle."""

    name: str
    data: bytes = Field(repr=False)
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


class UploadOutcome(BaseModel):
    """Result of transferring a single asset."""

    name: str
    stored_path: Optional[str] = None
    succeeded: bool = False
    error: Optional[str] = None
    batch_index: int = 0
    size: int = 0


class UploadSummary(BaseModel):
    """Aggregate result of one coordinator run."""

    outcomes: List[UploadOutcome] = Field(default_factory=list)
    total: int = 0
    batch_sizes: List[int] = Field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def error_count(self) -> int:
        return self.total - self.success_count

    @property
    def uploaded_paths(self) -> List[str]:
        return [o.stored_path for o in self.outcomes if o.succeeded and o.stored_path]

    @property
    def cover_path(self) -> Optional[str]:
        """First successfully stored path in upload order."""
        paths = self.uploaded_paths
        return paths[0] if paths else None


class IngestionResult(BaseModel):
    """Everything a finished ingestion run reports back to the caller."""

    constants: Dict[str, Any] = Field(default_factory=dict)
    uploaded_asset_paths: List[str] = Field(default_factory=list)
    asset_count: int = 0
    storage_path: str = ""
    cover_asset_url: Optional[str] = None
    total_size_mb: float = 0.0
    errors: List[str] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "constants": self.constants,
            "uploadedAssetPaths": self.uploaded_asset_paths,
            "assetCount": self.asset_count,
            "storagePath": self.storage_path,
            "coverAssetUrl": self.cover_asset_url,
            "totalSizeMB": round(self.total_size_mb, 2),
        }


class ProjectRecord(BaseModel):
    """Parent resource of a multi-resource creation run."""

    project_id: str
    owner_id: str
    name: str
    final_message: Optional[str] = None
    num_products: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class ProductRecord(BaseModel):
    """Target resource that an ingestion run finalizes."""

    product_id: str
    owner_id: str
    project_id: Optional[str] = None
    name: str = ""
    idx: str = ""
    configuration: Dict[str, Any] = Field(default_factory=dict)
    storage_path: Optional[str] = None
    cover_asset_url: Optional[str] = None
    aggregate_size_mb: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ViewRecord(BaseModel):
    """Group resource that products are assigned to."""

    view_id: str
    project_id: str
    idx: str = ""
    product_ids: List[str] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    """Fields written by the finalize step."""

    configuration: Dict[str, Any]
    storage_path: str
    cover_asset_url: Optional[str] = None
    aggregate_size_mb: float = 0.0
    updated_at: datetime = Field(default_factory=utcnow)


class BundleUpload(BaseModel):
    """One archive destined for one child product."""

    filename: str
    data: bytes = Field(repr=False)


class ProjectCreationRequest(BaseModel):
    """Input of an orchestrated creation run."""

    owner_id: str
    name: str
    final_message: Optional[str] = None
    bundles: List[BundleUpload] = Field(default_factory=list)
    num_products: Optional[int] = None
    product_names: List[str] = Field(default_factory=list)
    views: List[List[bool]] = Field(default_factory=list)

    @property
    def product_count(self) -> int:
        if self.num_products is not None:
            return self.num_products
        return len(self.bundles)


class ProjectCreationResult(BaseModel):
    """Output of a successful orchestrated creation run."""

    project: ProjectRecord
    products: List[ProductRecord] = Field(default_factory=list)
    views: List[ViewRecord] = Field(default_factory=list)
    ingestion_warnings: List[str] = Field(default_factory=list)
