"""Custom exceptions and error handling utilities for the bundle pipeline."""

from __future__ import annotations

from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, List, Optional, Type, TypeVar

from .logging_config import get_logger


class BundlePipelineError(Exception):
    """Base exception for all bundle pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BundlePipelineError):
    """Raised when a request is missing fields or carries the wrong file type."""

    status_code = 400


class AuthError(BundlePipelineError):
    """Raised when the caller has no valid session."""

    status_code = 401


class ConfigurationError(BundlePipelineError):
    """Error raised for invalid configuration options."""


class CorruptArchive(BundlePipelineError):
    """Raised when the uploaded container cannot be opened or enumerated."""

    status_code = 400


class MissingConfiguration(BundlePipelineError):
    """Raised when a bundle holds no configuration document."""

    status_code = 400


class MissingAssets(BundlePipelineError):
    """Raised when assets are required but the bundle produced none."""

    status_code = 400


class StorageError(BundlePipelineError):
    """Error raised for object storage failures."""

    def __init__(self, message: str = "", retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class StorageUnavailableError(StorageError):
    """The storage transport itself is unusable (no connection, no credentials)."""


class PerAssetUploadError(StorageError):
    """A single asset could not be transferred. Never fatal to a run."""

    def __init__(self, message: str, asset_name: str, batch_index: int) -> None:
        super().__init__(message)
        self.asset_name = asset_name
        self.batch_index = batch_index


class PersistenceError(BundlePipelineError):
    """The final resource-record update failed."""


class OrchestrationError(BundlePipelineError):
    """A structural step of multi-resource creation failed and was rolled back."""

    def __init__(
        self,
        message: str,
        step: str = "",
        rollback_attempted: bool = False,
        rollback_failures: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.rollback_attempted = rollback_attempted
        self.rollback_failures = list(rollback_failures or [])


F = TypeVar("F", bound=Callable[..., Any])


def with_error_handling(
    error_type: Type[BundlePipelineError] = BundlePipelineError,
) -> Callable[[F], F]:
    """Wrap a function so unknown failures surface as ``error_type``."""

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:  # type: ignore[override]
            logger = get_logger("errors")
            try:
                return func(*args, **kwargs)
            except BundlePipelineError:
                logger.error("Pipeline error in %s", func.__name__, exc_info=True)
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    f"Unhandled error in {func.__name__}: {exc}", exc_info=True
                )
                raise error_type(str(exc)) from exc

        return wrapper  # type: ignore[return-value]

    return decorator


@contextmanager
def translate_errors(
    error_type: Type[BundlePipelineError], prefix: str = ""
) -> Any:
    """Context manager re-raising unknown exceptions as ``error_type``."""
    try:
        yield
    except BundlePipelineError:
        raise
    except Exception as exc:  # noqa: BLE001
        message = f"{prefix}{exc}" if prefix else str(exc)
        raise error_type(message) from exc
