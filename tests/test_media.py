import pytest
from unittest.mock import patch, mock_open

from llmrelay.media import (
    LocalFileReader,
    attachment_name,
    base64_size,
    encode_file,
    fallback_text,
    is_too_large,
    media_category,
    mime_type_from_path,
    parse_data_uri,
)
from llmrelay.types import FilePart, ImagePart


class TestMimeHelpers:

    @pytest.mark.parametrize("path,expected", [
        ("photo.JPG", "image/jpeg"),
        ("/uploads/clip.mp4", "video/mp4"),
        ("https://cdn.example.com/memo.mp3?sig=abc#t=1", "audio/mpeg"),
        ("report.pdf", "application/pdf"),
        ("archive.xyz", "application/octet-stream"),
        ("", "application/octet-stream"),
    ])
    def test_mime_type_from_path(self, path, expected):
        assert mime_type_from_path(path) == expected

    @pytest.mark.parametrize("mime,expected", [
        ("image/webp", "image"),
        ("application/pdf", "pdf"),
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", "document"),
        ("application/vnd.ms-excel", "spreadsheet"),
        ("text/csv", "text"),
        (None, "file"),
    ])
    def test_media_category(self, mime, expected):
        assert media_category(mime) == expected

    def test_parse_data_uri(self):
        assert parse_data_uri("data:image/png;base64,SGVsbG8=") == ("image/png", "SGVsbG8=")
        assert parse_data_uri("https://example.com/cat.png") is None
        assert parse_data_uri("data:text/plain,hello") is None

    def test_base64_size(self):
        assert base64_size("aW1hZ2UgZGF0YQ==") == 12
        assert base64_size("data:image/png;base64,aW1hZ2UgZGF0YQ==") == 12
        assert is_too_large("A" * 400, 100)
        assert not is_too_large("A" * 100, 100)


class TestAttachmentNames:

    def test_name_wins(self):
        assert attachment_name(FilePart(url="/x/y.pdf", mime_type="application/pdf", name="Report")) == "Report"

    def test_basename_from_url(self):
        assert attachment_name(ImagePart(url="/uploads/cat.png", mime_type="image/png")) == "cat.png"

    def test_data_uri_has_no_name(self):
        part = ImagePart(url="data:image/png;base64,AAAA", mime_type="image/png")
        assert fallback_text(part) == "[Attachment: Unknown file (image/png)]"


class TestEncodeFile:

    @patch("pathlib.Path.is_file")
    @patch("builtins.open", new_callable=mock_open, read_data=b"image data")
    def test_encode_image_file(self, mock_file, mock_is_file):
        mock_is_file.return_value = True

        b64_data, mime_type = encode_file("test.jpg")

        assert mime_type == "image/jpeg"
        # "image data" in base64 is "aW1hZ2UgZGF0YQ=="
        assert b64_data == "aW1hZ2UgZGF0YQ=="

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            encode_file(tmp_path / "nope.png")


class TestLocalFileReader:

    @pytest.mark.asyncio
    async def test_reads_from_upload_dir(self, tmp_path):
        (tmp_path / "cat.png").write_bytes(b"image data")
        reader = LocalFileReader(tmp_path)

        assert await reader.read("/uploads/cat.png") == "data:image/png;base64,aW1hZ2UgZGF0YQ=="

    @pytest.mark.asyncio
    async def test_absolute_path(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_bytes(b"hi")

        assert await LocalFileReader().read(str(path)) == "data:text/plain;base64,aGk="

    @pytest.mark.asyncio
    async def test_passthrough_and_missing(self, tmp_path):
        reader = LocalFileReader(tmp_path)
        assert await reader.read("data:image/png;base64,AAAA") == "data:image/png;base64,AAAA"
        assert await reader.read("https://example.com/a.png") == "https://example.com/a.png"
        assert await reader.read("/uploads/missing.png") is None
        assert await reader.read("") is None
