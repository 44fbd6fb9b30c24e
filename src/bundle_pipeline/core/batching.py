"""Ordering and partitioning of assets into upload batches."""

from typing import List, Sequence

from .asset_utils import natural_sort_key
from .exceptions import ConfigurationError
from .models import AssetItem, PipelineSettings


def sort_assets(assets: Sequence[AssetItem]) -> List[AssetItem]:
    """Deterministic natural order by name (``img_2`` before ``img_10``)."""
    return sorted(assets, key=lambda asset: natural_sort_key(asset.name))


def batch_by_count(assets: Sequence[AssetItem], batch_size: int) -> List[List[AssetItem]]:
    """
    Split into consecutive groups of at most ``batch_size`` items.

    Examples:
        Seven assets with ``batch_size=3`` give batch sizes ``[3, 3, 1]``.
    """
    if batch_size < 1:
        raise ConfigurationError(f"batch_size must be >= 1, got {batch_size}")
    return [list(assets[i : i + batch_size]) for i in range(0, len(assets), batch_size)]


def batch_by_size(assets: Sequence[AssetItem], max_bytes: int) -> List[List[AssetItem]]:
    """
    Split into consecutive groups whose total size stays within ``max_bytes``.

    An item larger than ``max_bytes`` on its own always forms a singleton batch.
    """
    if max_bytes < 1:
        raise ConfigurationError(f"max_batch_bytes must be >= 1, got {max_bytes}")

    batches: List[List[AssetItem]] = []
    current: List[AssetItem] = []
    current_bytes = 0

    for asset in assets:
        if current and current_bytes + asset.size > max_bytes:
            batches.append(current)
            current = []
            current_bytes = 0
        current.append(asset)
        current_bytes += asset.size

    if current:
        batches.append(current)
    return batches


def plan_batches(
    assets: Sequence[AssetItem], settings: PipelineSettings
) -> List[List[AssetItem]]:
    """Sort the assets and partition them with the configured strategy."""
    ordered = sort_assets(assets)
    if settings.batch_strategy == "size":
        return batch_by_size(ordered, settings.max_batch_bytes)
    return batch_by_count(ordered, settings.batch_size)
