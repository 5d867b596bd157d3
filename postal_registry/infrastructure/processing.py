"""
Infrastructure adapters for archive extraction and extract transcoding.
"""

import dataclasses
import logging
import shutil
import zipfile
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Optional

from ..application.domain import (
    DEFAULT_CODE_WIDTH,
    ArchiveExtractor,
    ConversionResult,
    DatasetStore,
    DatasetTranscoder,
    PostalRecord,
    VersionIdentifier,
    normalize_code,
)
from ..application.exceptions import (
    ConfigurationError,
    FormatError,
    ProcessingError,
)

_PROGRESS_EVERY = 10_000


class ZipArchiveExtractor(ArchiveExtractor):
    """
    An adapter that implements the ArchiveExtractor port for zip archives.

    Only the first entry carrying the payload extension is extracted; every
    other entry (documentation, spreadsheets) is ignored.
    """

    def __init__(self, extension: str = ".txt"):
        """Initializes the extractor."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.extension = extension.lower()

    def _find_payload(self, archive: zipfile.ZipFile) -> Optional[zipfile.ZipInfo]:
        for entry in archive.infolist():
            if not entry.is_dir() and entry.filename.lower().endswith(self.extension):
                return entry
        return None

    def extract(self, archive_path: Path, output_dir: Path) -> Path:
        """
        Extracts the payload file from an archive into a directory.

        The entry's directory components are dropped, so the payload always
        lands directly in ``output_dir``.

        Args:
            archive_path: The downloaded zip archive.
            output_dir: The directory to write the payload to.

        Returns:
            The path of the extracted payload file.

        Raises:
            FormatError: If the archive is unreadable or holds no payload.
        """

        self.logger.info(f"Extracting {archive_path.name}...")
        try:
            with zipfile.ZipFile(archive_path) as archive:
                entry = self._find_payload(archive)
                if entry is None:
                    raise FormatError(
                        f"No {self.extension} file found in {archive_path.name}"
                    )

                self.logger.info(f"Found payload {entry.filename}")
                output_dir.mkdir(parents=True, exist_ok=True)
                target = output_dir / Path(entry.filename).name
                with archive.open(entry) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
        except zipfile.BadZipFile as e:
            raise FormatError(f"{archive_path.name} is not a zip archive: {e}") from e
        except OSError as e:
            raise ProcessingError(f"Could not extract {archive_path.name}: {e}") from e

        self.logger.info(f"Extracted {target.name}")
        return target

    def rename_extract(self, text_path: Path, version: VersionIdentifier) -> Path:
        """Renames an extracted payload to ``{version}.txt`` beside it."""
        renamed = text_path.with_name(f"{version}{self.extension}")
        if renamed != text_path:
            try:
                text_path.replace(renamed)
            except OSError as e:
                raise ProcessingError(f"Could not rename {text_path}: {e}") from e
            self.logger.info(f"Renamed {text_path.name} to {renamed.name}")
        return renamed


@dataclasses.dataclass(frozen=True)
class FieldLayout:
    """
    Column positions of the pipe-delimited extract.

    The registry publishes fifteen columns per line; only the ones named
    here are read. Lines with fewer than ``min_fields`` columns are dropped.
    """

    code: int = 0
    neighborhood: int = 1
    municipality: int = 3
    state: int = 4
    city: int = 5
    min_fields: int = 15
    header_lines: int = 2
    delimiter: str = "|"

    def __post_init__(self):
        widest = max(
            self.code, self.neighborhood, self.municipality, self.state, self.city
        )
        if self.min_fields <= widest:
            raise ConfigurationError(
                f"min_fields={self.min_fields} does not cover column {widest}"
            )


class _RecordBuilder:
    """Accumulates one code's record while the extract is scanned."""

    def __init__(self, code: str, state: str, municipality: str, city: str):
        self.code = code
        self.state = state
        self.municipality = municipality
        self.city = city
        # dict keys double as an insertion-ordered set
        self.neighborhoods: Dict[str, None] = {}

    def build(self) -> PostalRecord:
        return PostalRecord(
            code=self.code,
            state=self.state,
            municipality=self.municipality,
            city=self.city,
            neighborhoods=tuple(self.neighborhoods),
        )


class FixedFormatTranscoder(DatasetTranscoder):
    """
    An adapter that implements the DatasetTranscoder port for the registry's
    legacy pipe-delimited text extract.

    The extract is published in a single-byte legacy encoding; the encoding
    is always passed explicitly and never guessed.
    """

    def __init__(
        self,
        store: DatasetStore,
        encoding: str = "latin-1",
        layout: Optional[FieldLayout] = None,
        code_width: int = DEFAULT_CODE_WIDTH,
    ):
        """Initializes the transcoder."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store
        self.encoding = encoding
        self.layout = layout or FieldLayout()
        self.code_width = code_width

    def _read_lines(self, text_path: Path) -> Iterable[str]:
        try:
            content = text_path.read_bytes().decode(self.encoding)
        except (OSError, UnicodeDecodeError, LookupError) as e:
            raise ProcessingError(
                f"Failed to decode {text_path.name} as {self.encoding}: {e}"
            ) from e
        return content.split("\n")[self.layout.header_lines:]

    def index_lines(self, lines: Iterable[str]):
        """
        Builds the deduplicated code index from the extract's data lines.

        Returns:
            A tuple of the accepted line count and the code -> record map.
        """
        layout = self.layout
        builders: Dict[str, _RecordBuilder] = {}
        accepted = 0

        for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue

            fields = line.split(layout.delimiter)
            if len(fields) < layout.min_fields:
                continue

            raw_code = fields[layout.code].strip()
            if not raw_code:
                continue
            code = normalize_code(raw_code, self.code_width)

            builder = builders.get(code)
            if builder is None:
                municipality = fields[layout.municipality].strip()
                builder = _RecordBuilder(
                    code=code,
                    state=fields[layout.state].strip(),
                    municipality=municipality,
                    city=fields[layout.city].strip() or municipality,
                )
                builders[code] = builder

            builder.neighborhoods.setdefault(fields[layout.neighborhood].strip())
            accepted += 1

            if accepted % _PROGRESS_EVERY == 0:
                self.logger.info(f"Processed {accepted:,} records...")

        records = {code: builder.build() for code, builder in builders.items()}
        return accepted, records

    def convert(
        self, text_path: Path, version: VersionIdentifier
    ) -> ConversionResult:
        """
        Decodes an extract, indexes it by postal code, and persists it.

        This public method fulfills the DatasetTranscoder port contract. The
        dataset document is durable before this method returns, so a ledger
        entry written afterwards can never name a missing dataset.

        Args:
            text_path: The extracted text file.
            version: The version the dataset will be stored under.

        Returns:
            The accepted line count, the distinct code count, the immutable
            dataset, and where it was stored.

        Raises:
            ProcessingError: If decoding or writing the dataset fails.
        """

        self.logger.info(f"Transcoding {text_path.name} ({self.encoding})...")
        record_count, records = self.index_lines(self._read_lines(text_path))

        self.logger.info(f"Total records processed: {record_count:,}")
        self.logger.info(f"Unique postal codes: {len(records):,}")

        dataset = MappingProxyType(records)
        path = self.store.save(version, dataset)

        return ConversionResult(
            record_count=record_count,
            unique_key_count=len(records),
            dataset=dataset,
            path=path,
        )
