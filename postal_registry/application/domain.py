"""
This module defines the core domain models for the application.

These classes represent the pure, technology-agnostic entities and data
structures that the ingestion pipeline and the serving cache operate on.
"""

import dataclasses
import enum
from datetime import datetime
from pathlib import Path

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Tuple, Union

# A version is the YYYYMMDD form of the publication date reported by the
# source page. It is not guaranteed to increase between publications.
VersionIdentifier = str

DEFAULT_CODE_WIDTH = 5


def normalize_code(code: Union[str, int], width: int = DEFAULT_CODE_WIDTH) -> str:
    """Returns the fixed-width, zero-padded form of a postal code."""
    return str(code).strip().zfill(width)


# --- Domain Models ---

@dataclasses.dataclass(frozen=True)
class SessionContext:
    """Hidden form state captured from one page probe. Never persisted."""

    view_state: str
    event_validation: str
    view_state_generator: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class UpdateCheck:
    """The outcome of probing the source page for a new publication."""

    has_update: bool
    current_version: VersionIdentifier
    target_url: str
    source_file_date: Optional[str] = None
    session: Optional[SessionContext] = None


@dataclasses.dataclass(frozen=True)
class DownloadedArchive:
    """A downloaded archive file on disk."""

    path: Path
    byte_size: int


@dataclasses.dataclass(frozen=True)
class PostalRecord:
    """
    The aggregate of administrative names for one postal code.

    Neighborhood names are unique and kept in the order they were first seen
    in the extract.
    """

    code: str
    state: str
    municipality: str
    city: str
    neighborhoods: Tuple[str, ...] = ()


# A complete, read-only code -> record index for one version.
Dataset = Mapping[str, PostalRecord]


@dataclasses.dataclass(frozen=True)
class ConversionResult:
    """Counts and output of transcoding one extract."""

    record_count: int
    unique_key_count: int
    dataset: Dataset
    path: Path


@dataclasses.dataclass(frozen=True)
class ExtractMetadata:
    """One immutable ledger entry describing an ingested extract."""

    version: VersionIdentifier
    source_file_date: Optional[str]
    download_timestamp: datetime
    byte_size: int
    record_count: int
    unique_key_count: int
    file_name: str


@dataclasses.dataclass(frozen=True)
class SearchCriteria:
    """Optional, case-insensitive containment filters combined with AND."""

    state: Optional[str] = None
    city: Optional[str] = None
    municipality: Optional[str] = None
    neighborhood: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Page:
    """A slice of the loaded dataset."""

    total: int
    limit: int
    offset: int
    data: List[PostalRecord]

    @property
    def count(self) -> int:
        return len(self.data)


@dataclasses.dataclass(frozen=True)
class DatasetStats:
    version: VersionIdentifier
    total_postal_codes: int
    total_states: int
    total_cities: int
    total_municipalities: int
    total_neighborhoods: int


@dataclasses.dataclass(frozen=True)
class LedgerStats:
    total_versions: int
    first_version: Optional[VersionIdentifier]
    latest_version: Optional[VersionIdentifier]
    last_updated: Optional[datetime]


@dataclasses.dataclass(frozen=True)
class VersionArtifacts:
    """Ledger metadata for a version plus which of its files still exist."""

    metadata: ExtractMetadata
    archive_exists: bool
    extract_exists: bool
    dataset_exists: bool


@dataclasses.dataclass(frozen=True)
class Readiness:
    """Whether the pointer names a dataset that exists on storage."""

    ready: bool
    version: Optional[VersionIdentifier] = None
    reason: Optional[str] = None


class RunState(str, enum.Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    NO_UPDATE = "no_update"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    TRANSCODING = "transcoding"
    LEDGERING = "ledgering"
    RELOAD_SIGNALED = "reload_signaled"


@dataclasses.dataclass(frozen=True)
class RunReport:
    """The result of one pipeline run, successful or not."""

    success: bool
    has_update: bool = False
    version: Optional[VersionIdentifier] = None
    reason: Optional[str] = None
    appended: bool = False
    files: Dict[str, Path] = dataclasses.field(default_factory=dict)
    states: Tuple[RunState, ...] = ()


# --- Ports (Interfaces) ---

class UpdateDetector(ABC):
    """A port for probing the source for a new publication."""

    @abstractmethod
    async def check_for_update(
        self, last_known_version: Optional[VersionIdentifier]
    ) -> UpdateCheck:
        """Probes the source and compares against the last known version."""
        pass


class ArchiveDownloader(ABC):
    """A port for any archive downloader."""

    @abstractmethod
    async def download_file(
        self,
        target: str,
        destination: Path,
        session: Optional[SessionContext] = None,
        overwrite: bool = False,
    ) -> DownloadedArchive:
        """Downloads a single archive to a destination path."""
        pass


class ArchiveExtractor(ABC):
    """A port for pulling the payload out of a downloaded archive."""

    @abstractmethod
    def extract(self, archive_path: Path, output_dir: Path) -> Path:
        """Extracts the payload file and returns its path."""
        pass

    @abstractmethod
    def rename_extract(self, text_path: Path, version: VersionIdentifier) -> Path:
        """Renames an extracted payload after the version it belongs to."""
        pass


class DatasetTranscoder(ABC):
    """A port for turning an extract into a persisted dataset."""

    @abstractmethod
    def convert(
        self, text_path: Path, version: VersionIdentifier
    ) -> ConversionResult:
        """Decodes, indexes, and persists one extract."""
        pass


class DatasetStore(ABC):
    """A port for durable per-version dataset documents."""

    @abstractmethod
    def save(self, version: VersionIdentifier, dataset: Dataset) -> Path:
        pass

    @abstractmethod
    def load(self, version: VersionIdentifier) -> Optional[Dataset]:
        """Returns the dataset, or None if no document exists for it."""
        pass

    @abstractmethod
    def exists(self, version: VersionIdentifier) -> bool:
        pass


class VersionLedger(ABC):
    """A port for the append-only version history and its pointer."""

    @abstractmethod
    def add_version(self, metadata: ExtractMetadata) -> bool:
        """Appends an entry; returns False if its version is already held."""
        pass

    @abstractmethod
    def get_last_version(self) -> Optional[ExtractMetadata]:
        pass

    @abstractmethod
    def get_all_versions(self) -> List[ExtractMetadata]:
        pass
