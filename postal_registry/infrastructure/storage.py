"""
Pydantic models for the JSON documents kept on disk, plus the file-backed
implementation of the DatasetStore port.

The field names of these documents are a compatibility contract with the
history written by earlier deployments, so they are kept verbatim through
aliases while the domain uses its own names.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..application.domain import (
    Dataset,
    DatasetStore,
    ExtractMetadata,
    PostalRecord,
    VersionIdentifier,
)
from ..application.exceptions import ProcessingError
from ..application.layout import ArtifactLayout


def write_atomic(path: Path, payload: bytes):
    """Replaces ``path`` with ``payload`` so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    finally:
        tmp_path.unlink(missing_ok=True)


# --- Dataset document ---

class StoredPostalRecord(BaseModel):
    """One entry of a ``{version}.json`` dataset document."""

    cp: str
    estado: str
    municipio: str
    ciudad: str
    colonias: List[str] = []

    @classmethod
    def from_domain(cls, record: PostalRecord) -> "StoredPostalRecord":
        return cls(
            cp=record.code,
            estado=record.state,
            municipio=record.municipality,
            ciudad=record.city,
            colonias=list(record.neighborhoods),
        )

    def to_domain(self) -> PostalRecord:
        return PostalRecord(
            code=self.cp,
            state=self.estado,
            municipality=self.municipio,
            city=self.ciudad,
            neighborhoods=tuple(self.colonias),
        )


DatasetDocument = TypeAdapter(Dict[str, StoredPostalRecord])


# --- Ledger documents ---

class ExtractRecord(BaseModel):
    """A ledger entry as stored in ``versions.json`` and the pointer file."""

    model_config = ConfigDict(populate_by_name=True)

    version: str
    file_date: Optional[str] = Field(default=None, alias="fileDate")
    download_date: datetime = Field(alias="downloadDate")
    file_size: int = Field(alias="fileSize")
    record_count: int = Field(alias="recordCount")
    postal_code_count: int = Field(alias="postalCodeCount")
    file_name: str = Field(alias="fileName")

    @classmethod
    def from_domain(cls, metadata: ExtractMetadata) -> "ExtractRecord":
        return cls(
            version=metadata.version,
            file_date=metadata.source_file_date,
            download_date=metadata.download_timestamp,
            file_size=metadata.byte_size,
            record_count=metadata.record_count,
            postal_code_count=metadata.unique_key_count,
            file_name=metadata.file_name,
        )

    def to_domain(self) -> ExtractMetadata:
        return ExtractMetadata(
            version=self.version,
            source_file_date=self.file_date,
            download_timestamp=self.download_date,
            byte_size=self.file_size,
            record_count=self.record_count,
            unique_key_count=self.postal_code_count,
            file_name=self.file_name,
        )


class LedgerDocument(BaseModel):
    """The ``versions.json`` document: newest entry first."""

    model_config = ConfigDict(populate_by_name=True)

    versions: List[ExtractRecord] = []
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")


class PointerDocument(BaseModel):
    """
    The ``last-version.json`` document.

    Older deployments initialize it with every field set to null, which
    means no version has been ingested yet.
    """

    model_config = ConfigDict(populate_by_name=True)

    version: Optional[str] = None
    file_date: Optional[str] = Field(default=None, alias="fileDate")
    download_date: Optional[datetime] = Field(default=None, alias="downloadDate")
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    record_count: Optional[int] = Field(default=None, alias="recordCount")
    postal_code_count: Optional[int] = Field(
        default=None, alias="postalCodeCount"
    )
    file_name: Optional[str] = Field(default=None, alias="fileName")

    def to_record(self) -> Optional[ExtractRecord]:
        if not self.version:
            return None
        return ExtractRecord.model_validate(self.model_dump())


class JsonDatasetStore(DatasetStore):
    """Persists each version's dataset as ``{data_dir}/{version}.json``."""

    def __init__(self, layout: ArtifactLayout):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.layout = layout

    def path_for(self, version: VersionIdentifier) -> Path:
        return self.layout.dataset_path(version)

    def exists(self, version: VersionIdentifier) -> bool:
        return self.path_for(version).is_file()

    def save(self, version: VersionIdentifier, dataset: Dataset) -> Path:
        """
        Writes the dataset document for a version, replacing any older copy.

        Raises:
            ProcessingError: If the document cannot be written.
        """
        path = self.path_for(version)
        document = {
            code: StoredPostalRecord.from_domain(record)
            for code, record in dataset.items()
        }
        try:
            write_atomic(path, DatasetDocument.dump_json(document, indent=2))
        except OSError as e:
            raise ProcessingError(f"Could not write dataset {path}: {e}") from e

        self.logger.info(
            f"Dataset {path.name} written "
            f"({path.stat().st_size / 1024 / 1024:.2f} MB)"
        )
        return path

    def load(self, version: VersionIdentifier) -> Optional[Dataset]:
        """
        Reads the dataset document for a version.

        Returns:
            A code -> record mapping, or None if the document does not exist.

        Raises:
            ProcessingError: If the document exists but is malformed.
        """
        path = self.path_for(version)
        if not path.is_file():
            return None

        try:
            document = DatasetDocument.validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise ProcessingError(f"Could not read dataset {path}: {e}") from e

        return {code: stored.to_domain() for code, stored in document.items()}
