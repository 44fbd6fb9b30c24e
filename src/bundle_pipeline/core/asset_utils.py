"""Helpers shared by classification, batching and upload of assets."""

import posixpath
import re
from typing import List, Tuple, Union

from PIL import Image

DEFAULT_CONTENT_TYPE = "application/octet-stream"
BYTES_PER_MB = 1024 * 1024

_DIGITS = re.compile(r"(\d+)")


def infer_content_type(filename: str) -> str:
    """
    Infer a MIME type from the filename extension using Pillow's registry.

    Examples:
        >>> infer_content_type("img_0.png")
        'image/png'
        >>> infer_content_type("photo.JPG")
        'image/jpeg'
    """
    extension = posixpath.splitext(filename)[1].lower()
    image_format = Image.registered_extensions().get(extension)
    if image_format is None:
        return DEFAULT_CONTENT_TYPE
    return Image.MIME.get(image_format, DEFAULT_CONTENT_TYPE)


def natural_sort_key(name: str) -> Tuple[List[Tuple[int, Union[int, str]]], str]:
    """
    Case-insensitive, numeric-aware sort key.

    ``img_2`` sorts before ``img_10``. The raw name is the final tie-break so
    the ordering is total and deterministic.
    """
    parts: List[Tuple[int, Union[int, str]]] = []
    for chunk in _DIGITS.split(name.casefold()):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk)))
        else:
            parts.append((1, chunk))
    return parts, name


def base_name(entry_name: str) -> str:
    """Last path component of an archive entry name."""
    return posixpath.basename(entry_name.replace("\\", "/"))


def calculate_storage_prefix(owner_id: str, target_id: str) -> str:
    """Storage folder for one target resource: ``{owner}/{target}``."""
    return f"{owner_id}/{target_id}"


def calculate_storage_key(owner_id: str, target_id: str, asset_name: str) -> str:
    """
    Storage key for one asset: ``{owner}/{target}/{asset}``.

    Examples:
        >>> calculate_storage_key("admin-1", "prod-9", "img_0.png")
        'admin-1/prod-9/img_0.png'
    """
    return f"{calculate_storage_prefix(owner_id, target_id)}/{asset_name}"


def bytes_to_mb(size: int) -> float:
    return size / BYTES_PER_MB
