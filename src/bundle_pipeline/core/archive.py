"""Opening uploaded bundles and reading their entries."""

import io
import zipfile
import zlib
from typing import Dict

from .exceptions import CorruptArchive
from .logging_config import get_logger

logger = get_logger("archive")


def _open(data: bytes) -> zipfile.ZipFile:
    if not data:
        raise CorruptArchive("Corrupt or invalid ZIP archive: file is empty")
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, OSError) as exc:
        raise CorruptArchive(f"Corrupt or invalid ZIP archive: {exc}") from exc


def validate_archive(data: bytes) -> None:
    """
    Open the container and enumerate its entries, discarding the result.

    Called before anything else so that a malformed upload is rejected
    before any progress is reported.

    Raises:
        CorruptArchive: If the container cannot be opened or enumerated.
    """
    with _open(data) as archive:
        try:
            archive.infolist()
            bad_entry = archive.testzip()
        except (zipfile.BadZipFile, zlib.error, OSError, RuntimeError, EOFError) as exc:
            raise CorruptArchive(f"Corrupt or invalid ZIP archive: {exc}") from exc
    if bad_entry is not None:
        raise CorruptArchive(f"Corrupt or invalid ZIP archive: bad entry {bad_entry}")


def extract_archive(data: bytes) -> Dict[str, bytes]:
    """
    Extract every file entry of the bundle.

    Directory entries are skipped. The returned mapping preserves the
    archive's enumeration order.

    Returns:
        Mapping of entry name to payload bytes.

    Raises:
        CorruptArchive: If the container or an entry cannot be read.
    """
    entries: Dict[str, bytes] = {}
    with _open(data) as archive:
        try:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                entries[info.filename] = archive.read(info)
        except (zipfile.BadZipFile, zlib.error, OSError, RuntimeError, EOFError) as exc:
            raise CorruptArchive(f"Corrupt or invalid ZIP archive: {exc}") from exc

    logger.debug(f"Extracted {len(entries)} entries from archive")
    return entries
