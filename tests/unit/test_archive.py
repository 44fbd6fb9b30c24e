"""Unit tests for archive validation and extraction."""

import io
import zipfile

import pytest

from bundle_pipeline.core.archive import extract_archive, validate_archive
from bundle_pipeline.core.exceptions import CorruptArchive
from bundle_pipeline.testing import build_test_bundle, create_test_image


def _zip_with_directory() -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("assets/", b"")
        archive.writestr("assets/img_1.png", b"png-bytes")
        archive.writestr("index.html", b"<html></html>")
    return buffer.getvalue()


class TestValidateArchive:
    def test_valid_archive(self):
        validate_archive(build_test_bundle({"img_1.png": create_test_image()}))

    @pytest.mark.parametrize(
        "data",
        [b"", b"not a zip at all", b"PK\x03\x04 truncated"],
    )
    def test_invalid_archive(self, data):
        with pytest.raises(CorruptArchive, match="Corrupt or invalid ZIP archive"):
            validate_archive(data)

    def test_damaged_entry(self):
        data = bytearray(build_test_bundle({"img_1.png": b"x" * 2000}))
        # Flip bytes inside the first entry's compressed payload.
        offset = data.find(b"index.html") + len(b"index.html") + 5
        data[offset : offset + 10] = b"\xff" * 10
        with pytest.raises(CorruptArchive):
            validate_archive(bytes(data))


class TestExtractArchive:
    def test_extracts_all_files_in_order(self):
        data = build_test_bundle({"img_2.png": b"two", "img_1.png": b"one"})
        entries = extract_archive(data)
        assert list(entries) == ["index.html", "img_2.png", "img_1.png"]
        assert entries["img_1.png"] == b"one"

    def test_skips_directory_entries(self):
        entries = extract_archive(_zip_with_directory())
        assert "assets/" not in entries
        assert entries["assets/img_1.png"] == b"png-bytes"

    def test_corrupt_archive(self):
        with pytest.raises(CorruptArchive):
            extract_archive(b"garbage")
