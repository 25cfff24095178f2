"""Download, verification and archive extraction."""

from toolstrap.fetch.archive import extract_archive
from toolstrap.fetch.download import (
    AutoInteraction,
    Downloader,
    InteractionStrategy,
    checksum_matches,
    md5_of_file,
)

__all__ = [
    "AutoInteraction",
    "Downloader",
    "InteractionStrategy",
    "checksum_matches",
    "md5_of_file",
    "extract_archive",
]
