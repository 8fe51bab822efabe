"""Directory scanning and file-type detection.

The scan pipeline lives in :mod:`jdorg.ingestion.pipeline`; it is not imported
here because it depends on the classification and organization packages,
which themselves use the detectors defined in this package.
"""

from .detectors import TypeDetector, extension_of, normalize_extension
from .discovery import DirectoryScanner
from .models import ScannedFileDraft, ScanProgress, ScanResult

__all__ = [
    "DirectoryScanner",
    "ScanProgress",
    "ScanResult",
    "ScannedFileDraft",
    "TypeDetector",
    "extension_of",
    "normalize_extension",
]
