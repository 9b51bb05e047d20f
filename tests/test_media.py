# tests/test_media.py
import pytest

from cas_gateway.storage.media import DEFAULT_MIME_TYPE, detect_content_type_and_filename, mime_type_for_name

ROOT = "0123456789abcdef" * 4


class TestMimeTypeForName:

    @pytest.mark.parametrize("name,expected", [
        ("photo.JPG", "image/jpeg"),
        ("photo.jpeg", "image/jpeg"),
        ("icon.png", "image/png"),
        ("anim.gif", "image/gif"),
        ("pic.webp", "image/webp"),
        ("doc.pdf", "application/pdf"),
        ("notes.txt", "text/plain"),
        ("data.json", "application/json"),
    ])
    def test_known_extensions(self, name, expected):
        assert mime_type_for_name(name) == expected

    def test_unknown_extension(self):
        assert mime_type_for_name("archive.tar") == DEFAULT_MIME_TYPE
        assert mime_type_for_name("noext") == DEFAULT_MIME_TYPE


class TestDetectContentType:
    """Names and types for downloads requested without a filename."""

    @pytest.mark.parametrize("data,mime_type,file_name", [
        (b"\x89PNG\r\n\x1a\n", "image/png", "image-01234567.png"),
        (b"\xff\xd8\xff\xe0", "image/jpeg", "image-01234567.jpg"),
        (b"GIF89a", "image/gif", "image-01234567.gif"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp", "image-01234567.webp"),
        (b"%PDF-1.7", "application/pdf", "document-01234567.pdf"),
        (b'{"a": 1}', "application/json", "data-01234567.json"),
        (b"plain words", "text/plain", "text-01234567.txt"),
        (b"\x00\xff\xfe\x80", DEFAULT_MIME_TYPE, "data-01234567.bin"),
    ])
    def test_detection(self, data, mime_type, file_name):
        assert detect_content_type_and_filename(data, ROOT) == (mime_type, file_name)
