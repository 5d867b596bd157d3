"""
Storage layout for the durable artifacts of every ingested version.

Downloads hold the raw archive and the renamed text extract; the data
directory holds the derived datasets together with the ledger and pointer
documents.
"""

import dataclasses
from pathlib import Path

from .domain import VersionIdentifier

LEDGER_FILE = "versions.json"
POINTER_FILE = "last-version.json"
EXTRACT_SUFFIX = ".txt"
DATASET_SUFFIX = ".json"


@dataclasses.dataclass(frozen=True)
class ArtifactLayout:
    downloads_dir: Path
    data_dir: Path
    archive_prefix: str = "sepomex"

    @classmethod
    def from_dirs(
        cls, downloads_dir: str, data_dir: str, archive_prefix: str = "sepomex"
    ) -> "ArtifactLayout":
        return cls(Path(downloads_dir), Path(data_dir), archive_prefix)

    def ensure_directories(self):
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def archive_path(self, version: VersionIdentifier) -> Path:
        return self.downloads_dir / f"{self.archive_prefix}-{version}.zip"

    def extract_path(self, version: VersionIdentifier) -> Path:
        return self.downloads_dir / f"{version}{EXTRACT_SUFFIX}"

    def dataset_path(self, version: VersionIdentifier) -> Path:
        return self.data_dir / f"{version}{DATASET_SUFFIX}"

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / LEDGER_FILE

    @property
    def pointer_path(self) -> Path:
        return self.data_dir / POINTER_FILE
