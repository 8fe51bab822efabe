"""File type detection based on filename extensions."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping

FILE_TYPES = (
    "document",
    "spreadsheet",
    "presentation",
    "image",
    "video",
    "audio",
    "archive",
    "code",
    "data",
    "font",
    "ebook",
    "design",
    "other",
)

_TYPE_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "document": ("pdf", "doc", "docx", "txt", "rtf", "odt", "pages", "md", "markdown"),
    "spreadsheet": ("xls", "xlsx", "csv", "numbers", "ods"),
    "presentation": ("ppt", "pptx", "key", "odp"),
    "image": (
        "jpg", "jpeg", "png", "gif", "bmp", "svg", "webp", "ico",
        "tiff", "tif", "heic", "heif", "raw", "cr2", "nef",
    ),
    "video": ("mp4", "mov", "avi", "mkv", "wmv", "flv", "webm", "m4v"),
    "audio": ("mp3", "wav", "flac", "aac", "ogg", "wma", "m4a", "aiff"),
    "archive": ("zip", "rar", "7z", "tar", "gz", "bz2", "dmg", "iso"),
    "code": (
        "js", "jsx", "ts", "tsx", "py", "rb", "java", "c", "cpp", "h", "cs", "go",
        "rs", "swift", "kt", "php", "html", "css", "scss", "less", "sql", "sh",
        "bash", "zsh", "ps1", "json", "xml", "yaml", "yml", "toml",
    ),
    "data": ("db", "sqlite", "sqlite3", "mdb", "accdb"),
    "font": ("ttf", "otf", "woff", "woff2", "eot"),
    "ebook": ("epub", "mobi", "azw", "azw3"),
    "design": ("psd", "ai", "sketch", "fig", "xd", "indd"),
}  # fmt: skip


def normalize_extension(value: str) -> str:
    """Return ``value`` lower-cased with any leading dots removed."""
    return value.strip().lstrip(".").lower()


def extension_of(filename: str) -> str:
    """Return the normalized extension of ``filename`` (empty when there is none)."""
    name = Path(filename).name
    if name.startswith(".") and name.count(".") == 1:
        return ""
    _, dot, suffix = name.rpartition(".")
    return suffix.lower() if dot else ""


class TypeDetector:
    """Map extensions to coarse file-type categories."""

    def __init__(self, overrides: Mapping[str, str] | None = None) -> None:
        self._map = {
            extension: file_type
            for file_type, extensions in _TYPE_EXTENSIONS.items()
            for extension in extensions
        }
        for extension, file_type in (overrides or {}).items():
            self._map[normalize_extension(extension)] = file_type

    def detect(self, path: Path | str) -> str:
        """Return the file-type category for ``path``."""
        return self.for_extension(extension_of(str(path)))

    def for_extension(self, extension: str) -> str:
        return self._map.get(normalize_extension(extension), "other")

    def matches_filter(self, extension: str, filters: Iterable[str]) -> bool:
        """Return whether a file passes a watch-folder type filter.

        Filters may name file-type categories (``document``) or extensions
        (``pdf``/``.pdf``). An empty filter accepts everything.
        """
        wanted = {normalize_extension(item) for item in filters if item.strip()}
        if not wanted:
            return True
        extension = normalize_extension(extension)
        return extension in wanted or self.for_extension(extension) in wanted


__all__ = ["FILE_TYPES", "TypeDetector", "extension_of", "normalize_extension"]
