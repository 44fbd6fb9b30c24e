"""HTTP surface of the bundle pipeline."""

from .app import create_app

__all__ = ["create_app"]
