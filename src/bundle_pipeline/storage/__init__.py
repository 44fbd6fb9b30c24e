"""Object storage backends."""

from .s3 import S3AssetStorage

__all__ = ["S3AssetStorage"]
