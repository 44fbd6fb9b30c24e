"""Testing utilities and fakes for the bundle pipeline."""

from .fakes import (
    SAMPLE_CONFIGURATION,
    FakeLogger,
    FakeStorage,
    InMemoryStore,
    SleepRecorder,
    StoredObject,
    build_test_bundle,
    create_test_image,
    numbered_images,
    throttling_error,
)

__all__ = [
    "SAMPLE_CONFIGURATION",
    "FakeLogger",
    "FakeStorage",
    "InMemoryStore",
    "SleepRecorder",
    "StoredObject",
    "build_test_bundle",
    "create_test_image",
    "numbered_images",
    "throttling_error",
]
