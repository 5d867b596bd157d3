"""File-backed implementation of the VersionLedger port."""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import ValidationError

from ..application.domain import (
    ExtractMetadata,
    LedgerStats,
    VersionArtifacts,
    VersionIdentifier,
    VersionLedger,
)
from ..application.exceptions import LedgerError, VersionConflict
from ..application.layout import ArtifactLayout

from .storage import ExtractRecord, LedgerDocument, PointerDocument, write_atomic


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JsonVersionLedger(VersionLedger):
    """
    An append-only version history in ``versions.json`` plus a single
    ``last-version.json`` pointer mirroring its newest entry.

    The two documents are written one after the other. Each write is atomic
    on its own, but a crash between them leaves the pointer one entry behind
    the history until the next append.
    """

    def __init__(
        self,
        layout: ArtifactLayout,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initializes the ledger over a storage layout."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.layout = layout
        self.clock = clock
        self._lock = threading.Lock()

    def _read_ledger(self) -> LedgerDocument:
        path = self.layout.ledger_path
        if not path.is_file():
            return LedgerDocument()
        try:
            return LedgerDocument.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise LedgerError(f"Could not read ledger {path}: {e}") from e

    def _read_pointer(self) -> Optional[ExtractRecord]:
        path = self.layout.pointer_path
        if not path.is_file():
            return None
        try:
            return PointerDocument.model_validate_json(path.read_bytes()).to_record()
        except (OSError, ValidationError) as e:
            raise LedgerError(f"Could not read pointer {path}: {e}") from e

    def _write(self, path, document):
        try:
            write_atomic(
                path, document.model_dump_json(by_alias=True, indent=2).encode()
            )
        except OSError as e:
            raise LedgerError(f"Could not write {path}: {e}") from e

    def append(self, metadata: ExtractMetadata):
        """
        Prepends an entry to the history, then moves the pointer to it.

        Raises:
            VersionConflict: If the version is already in the history.
            LedgerError: If either document cannot be read or written.
        """
        with self._lock:
            document = self._read_ledger()
            if any(r.version == metadata.version for r in document.versions):
                raise VersionConflict(metadata.version)

            record = ExtractRecord.from_domain(metadata)
            document.versions.insert(0, record)
            document.last_updated = self.clock()

            self._write(self.layout.ledger_path, document)
            self._write(self.layout.pointer_path, record)

    def add_version(self, metadata: ExtractMetadata) -> bool:
        """
        Records a newly ingested extract.

        Adding a version that is already recorded is a no-op, not an error.

        Args:
            metadata: The entry to append.

        Returns:
            True if the entry was appended, False if its version existed.

        Raises:
            LedgerError: If the ledger documents cannot be read or written.
        """
        try:
            self.append(metadata)
        except VersionConflict as e:
            self.logger.warning(str(e))
            return False

        self.logger.info(f"New version added to the ledger: {metadata.version}")
        return True

    def version_exists(self, version: VersionIdentifier) -> bool:
        return self.get_version(version) is not None

    def get_last_version(self) -> Optional[ExtractMetadata]:
        """Returns the pointer's entry, or None if nothing was ingested yet."""
        record = self._read_pointer()
        return record.to_domain() if record else None

    def get_all_versions(self) -> List[ExtractMetadata]:
        """Returns the full history, newest first."""
        return [record.to_domain() for record in self._read_ledger().versions]

    def get_version(
        self, version: VersionIdentifier
    ) -> Optional[ExtractMetadata]:
        for record in self._read_ledger().versions:
            if record.version == version:
                return record.to_domain()
        return None

    def get_stats(self) -> LedgerStats:
        document = self._read_ledger()
        versions = document.versions
        return LedgerStats(
            total_versions=len(versions),
            first_version=versions[-1].version if versions else None,
            latest_version=versions[0].version if versions else None,
            last_updated=document.last_updated,
        )

    def describe_version(
        self, version: VersionIdentifier
    ) -> Optional[VersionArtifacts]:
        """Returns a version's entry and which of its artifacts still exist."""
        metadata = self.get_version(version)
        if metadata is None:
            return None
        return VersionArtifacts(
            metadata=metadata,
            archive_exists=self.layout.archive_path(version).is_file(),
            extract_exists=self.layout.extract_path(version).is_file(),
            dataset_exists=self.layout.dataset_path(version).is_file(),
        )
