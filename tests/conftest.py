"""Shared fixtures: storage layouts, synthetic extracts, and zip archives."""

import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable

import pytest

from postal_registry.application.domain import ExtractMetadata
from postal_registry.application.layout import ArtifactLayout
from postal_registry.infrastructure.ledger import JsonVersionLedger
from postal_registry.infrastructure.processing import FixedFormatTranscoder
from postal_registry.infrastructure.storage import JsonDatasetStore

HEADER = (
    "El Catálogo Nacional de Códigos Postales, es elaborado por Correos de México.\n"
    "d_codigo|d_asenta|d_tipo_asenta|D_mnpio|d_estado|d_ciudad|d_CP|c_estado|"
    "c_oficina|c_CP|c_tipo_asenta|c_mnpio|id_asenta_cpcons|d_zona|c_cve_ciudad\n"
)


def make_line(code, neighborhood, municipality, state, city=""):
    """Builds one fifteen-column extract line."""
    fields = [
        code, neighborhood, "Colonia", municipality, state, city,
        "06001", "09", "06001", "", "09", "015", "0001", "Urbano", "01",
    ]
    return "|".join(fields)


def write_extract(path: Path, lines: Iterable[str], encoding="latin-1") -> Path:
    path.write_bytes((HEADER + "\n".join(lines) + "\n").encode(encoding))
    return path


def write_zip(path: Path, entries: Dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, payload in entries.items():
            archive.writestr(name, payload)
    return path


def make_metadata(version="20240105", **overrides) -> ExtractMetadata:
    values = dict(
        version=version,
        source_file_date="05/01/2024",
        download_timestamp=datetime(2024, 1, 6, 3, 0, tzinfo=timezone.utc),
        byte_size=1024,
        record_count=10,
        unique_key_count=4,
        file_name=f"{version}.txt",
    )
    values.update(overrides)
    return ExtractMetadata(**values)


@pytest.fixture
def layout(tmp_path) -> ArtifactLayout:
    layout = ArtifactLayout(tmp_path / "downloads", tmp_path / "data")
    layout.ensure_directories()
    return layout


@pytest.fixture
def store(layout) -> JsonDatasetStore:
    return JsonDatasetStore(layout)


@pytest.fixture
def ledger(layout) -> JsonVersionLedger:
    return JsonVersionLedger(layout)


@pytest.fixture
def transcoder(store) -> FixedFormatTranscoder:
    return FixedFormatTranscoder(store)
