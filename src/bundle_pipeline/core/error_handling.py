# src/bundle_pipeline/core/error_handling.py

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from botocore.exceptions import ClientError as BotocoreClientError

from .exceptions import StorageError, StorageUnavailableError

RETRYABLE_STORAGE_ERROR_CODES = (
    "SlowDown",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequests",
    "ProvisionedThroughputExceededException",
    "503",
)


def is_retryable_storage_error(error: BaseException) -> bool:
    """
    A storage error is retryable when it was flagged as such, or when the
    botocore error underneath carries a throttling code.
    """
    if isinstance(error, StorageUnavailableError):
        return False
    if isinstance(error, StorageError) and error.retryable:
        return True
    cause = error.__cause__
    if isinstance(cause, BotocoreClientError):
        error_code = cause.response.get("Error", {}).get("Code")
        return error_code in RETRYABLE_STORAGE_ERROR_CODES
    return False


def retry_storage_operation(
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    backoff_factor: float = 2,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
):
    """
    Decorator to retry async storage operations with exponential backoff.

    Only throttling failures are retried; anything else is raised on the
    first attempt.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + "." + func.__name__)
            attempts = 0
            delay = initial_delay
            while True:
                try:
                    return await func(*args, **kwargs)
                except StorageError as e:
                    attempts += 1
                    if not is_retryable_storage_error(e):
                        raise
                    if attempts >= max_attempts:
                        logger.error(
                            f"Storage operation '{func.__name__}' failed after "
                            f"{max_attempts} attempts. Error: {e}"
                        )
                        raise
                    logger.info(
                        f"Storage operation '{func.__name__}' throttled. "
                        f"Attempt {attempts}/{max_attempts}. "
                        f"Retrying in {delay:.2f}s. Error: {e}"
                    )
                    await sleep(delay)
                    delay *= backoff_factor

        return wrapper

    return decorator


class BatchOperationContextManager:
    """
    Context manager for batch operations to collect and summarize errors.
    """

    def __init__(self, operation_name: str = "Batch Operation"):
        self.operation_name = operation_name
        self.errors: List[Dict[str, Any]] = []
        self.logger = logging.getLogger(
            self.__class__.__module__ + "." + self.__class__.__name__
        )

    def __enter__(self):
        self.logger.info(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )
        elif self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.error(
                    f"  Error {i + 1}/{len(self.errors)} for item "
                    f"'{error_detail['item']}' (batch {error_detail['batch']}): "
                    f"{error_detail['error']}"
                )
        else:
            self.logger.info(f"{self.operation_name} completed successfully.")

        return False

    def add_error(
        self,
        error_message: str,
        item_identifier: str = "Unknown item",
        batch_index: Optional[int] = None,
    ):
        """
        Report an error for a specific item within the 'with' block.

        Args:
            error_message: The error message or exception string.
            item_identifier: A string identifying the item that failed.
            batch_index: Index of the batch the item belonged to.
        """
        self.errors.append(
            {"item": item_identifier, "error": str(error_message), "batch": batch_index}
        )
        self.logger.debug(
            f"Error added for item '{item_identifier}' in {self.operation_name}: "
            f"{error_message}"
        )

    @property
    def messages(self) -> List[str]:
        return [f"{e['item']}: {e['error']}" for e in self.errors]
