import json
from datetime import datetime, timezone

import pytest

from conftest import make_metadata
from postal_registry.application.exceptions import LedgerError, VersionConflict
from postal_registry.infrastructure.ledger import JsonVersionLedger


def test_empty_ledger_has_no_last_version(ledger):
    assert ledger.get_last_version() is None
    assert ledger.get_all_versions() == []


def test_first_append_sets_history_and_pointer(ledger, layout):
    metadata = make_metadata("20240105")

    assert ledger.add_version(metadata) is True

    assert ledger.get_last_version() == metadata
    assert ledger.get_all_versions() == [metadata]
    pointer = json.loads(layout.pointer_path.read_text())
    history = json.loads(layout.ledger_path.read_text())
    assert pointer == history["versions"][0]


def test_duplicate_version_is_a_no_op(ledger, layout):
    first = make_metadata("20240105")
    duplicate = make_metadata("20240105", record_count=999)
    ledger.add_version(first)
    history_before = layout.ledger_path.read_bytes()
    pointer_before = layout.pointer_path.read_bytes()

    assert ledger.add_version(duplicate) is False

    assert layout.ledger_path.read_bytes() == history_before
    assert layout.pointer_path.read_bytes() == pointer_before
    assert ledger.get_all_versions() == [first]


def test_append_raises_version_conflict(ledger):
    ledger.append(make_metadata("20240105"))

    with pytest.raises(VersionConflict):
        ledger.append(make_metadata("20240105"))


def test_history_is_newest_first_and_pointer_follows(ledger):
    older = make_metadata("20240105")
    newer = make_metadata("20240212")
    ledger.add_version(older)
    ledger.add_version(newer)

    assert [m.version for m in ledger.get_all_versions()] == ["20240212", "20240105"]
    assert ledger.get_last_version() == newer


def test_on_disk_documents_use_legacy_field_names(ledger, layout):
    ledger.add_version(make_metadata("20240105"))

    entry = json.loads(layout.ledger_path.read_text())["versions"][0]
    assert set(entry) == {
        "version",
        "fileDate",
        "downloadDate",
        "fileSize",
        "recordCount",
        "postalCodeCount",
        "fileName",
    }
    assert entry["postalCodeCount"] == 4


def test_reads_history_written_by_earlier_deployments(layout):
    layout.ledger_path.write_text(json.dumps({
        "versions": [{
            "version": "20231120",
            "fileDate": "20/11/2023",
            "downloadDate": "2023-11-20T09:00:00.000Z",
            "fileSize": 2048,
            "recordCount": 145000,
            "postalCodeCount": 31900,
            "fileName": "20231120.txt",
        }],
        "lastUpdated": "2023-11-20T09:00:01.000Z",
    }))
    layout.pointer_path.write_text(json.dumps({
        "version": None, "downloadDate": None, "fileDate": None,
    }))
    ledger = JsonVersionLedger(layout)

    assert ledger.get_last_version() is None
    entry = ledger.get_version("20231120")
    assert entry.unique_key_count == 31900
    assert entry.download_timestamp == datetime(2023, 11, 20, 9, 0, tzinfo=timezone.utc)


def test_malformed_ledger_is_reported_not_overwritten(ledger, layout):
    layout.ledger_path.write_text("{not json")

    with pytest.raises(LedgerError):
        ledger.add_version(make_metadata("20240105"))

    assert layout.ledger_path.read_text() == "{not json"


def test_stats_track_first_and_latest(layout):
    stamp = datetime(2024, 2, 12, tzinfo=timezone.utc)
    ledger = JsonVersionLedger(layout, clock=lambda: stamp)
    ledger.add_version(make_metadata("20240105"))
    ledger.add_version(make_metadata("20240212"))

    stats = ledger.get_stats()

    assert stats.total_versions == 2
    assert stats.first_version == "20240105"
    assert stats.latest_version == "20240212"
    assert stats.last_updated == stamp


def test_describe_version_reports_artifacts(ledger, layout):
    ledger.add_version(make_metadata("20240105"))
    layout.dataset_path("20240105").write_text("{}")
    layout.extract_path("20240105").write_text("")

    described = ledger.describe_version("20240105")

    assert described.dataset_exists is True
    assert described.extract_exists is True
    assert described.archive_exists is False
    assert ledger.describe_version("19990101") is None
