import pytest

from conftest import HEADER, make_line, make_metadata, write_zip
from postal_registry.application.cache import DatasetCache
from postal_registry.application.domain import (
    DownloadedArchive,
    RunState,
    SessionContext,
    UpdateCheck,
)
from postal_registry.application.exceptions import (
    DownloadError,
    ParseError,
    ProcessingError,
)
from postal_registry.application.service import (
    ExtractProcessingPipeline,
    IngestionService,
)
from postal_registry.infrastructure.processing import ZipArchiveExtractor

SESSION = SessionContext(view_state="vs", event_validation="ev")
LINES = [
    make_line("01000", "San Ángel", "Álvaro Obregón", "Ciudad de México", "Ciudad de México"),
    make_line("01020", "Guadalupe Inn", "Álvaro Obregón", "Ciudad de México", "Ciudad de México"),
    make_line("01020", "Axotla", "Álvaro Obregón", "Ciudad de México", "Ciudad de México"),
]


class FakeDetector:
    def __init__(self, version="20240212", error=None):
        self.version = version
        self.error = error
        self.seen = []

    async def check_for_update(self, last_known_version):
        self.seen.append(last_known_version)
        if self.error:
            raise self.error
        return UpdateCheck(
            has_update=last_known_version != self.version,
            current_version=self.version,
            target_url="https://sepomex.example/export",
            source_file_date="12/02/2024",
            session=SESSION,
        )


class FakeDownloader:
    def __init__(self, entries=None, error=None):
        self.entries = entries or {
            "CPdescarga.txt": (HEADER + "\n".join(LINES)).encode("latin-1")
        }
        self.error = error
        self.calls = []

    async def download_file(self, target, destination, session=None, overwrite=False):
        self.calls.append((target, destination, session, overwrite))
        if self.error:
            raise self.error
        destination.parent.mkdir(parents=True, exist_ok=True)
        write_zip(destination, self.entries)
        return DownloadedArchive(path=destination, byte_size=destination.stat().st_size)


def build_service(layout, ledger, transcoder, detector, downloader, listeners=()):
    pipeline = ExtractProcessingPipeline(
        downloader, ZipArchiveExtractor(), transcoder, layout
    )
    return IngestionService(detector, pipeline, ledger, reload_listeners=listeners)


@pytest.mark.asyncio
async def test_successful_run_ingests_and_signals_reload(layout, ledger, store, transcoder):
    cache = DatasetCache(ledger, store)
    downloader = FakeDownloader()
    service = build_service(
        layout, ledger, transcoder, FakeDetector(), downloader, [cache.reload]
    )

    report = await service.run()

    assert report.success is True
    assert report.has_update is True
    assert report.appended is True
    assert report.version == "20240212"
    assert report.states == (
        RunState.IDLE,
        RunState.DETECTING,
        RunState.DOWNLOADING,
        RunState.EXTRACTING,
        RunState.TRANSCODING,
        RunState.LEDGERING,
        RunState.RELOAD_SIGNALED,
        RunState.IDLE,
    )
    assert downloader.calls[0][1] == layout.archive_path("20240212")
    assert downloader.calls[0][2] == SESSION
    assert report.files["txt"] == layout.extract_path("20240212")
    assert report.files["json"] == layout.dataset_path("20240212")
    assert not (layout.downloads_dir / "CPdescarga.txt").exists()

    entry = ledger.get_last_version()
    assert entry.record_count == 3
    assert entry.unique_key_count == 2
    assert entry.file_name == "20240212.txt"
    assert entry.source_file_date == "12/02/2024"

    assert cache.version == "20240212"
    assert cache.get_by_code("1020").neighborhoods == ("Guadalupe Inn", "Axotla")


@pytest.mark.asyncio
async def test_known_version_ends_without_download(layout, ledger, transcoder):
    ledger.add_version(make_metadata("20240212"))
    detector = FakeDetector()
    downloader = FakeDownloader()
    service = build_service(layout, ledger, transcoder, detector, downloader)

    report = await service.run()

    assert report.success is True
    assert report.has_update is False
    assert detector.seen == ["20240212"]
    assert downloader.calls == []
    assert report.states == (
        RunState.IDLE, RunState.DETECTING, RunState.NO_UPDATE, RunState.IDLE,
    )


@pytest.mark.asyncio
async def test_check_only_stops_after_detection(layout, ledger, transcoder):
    downloader = FakeDownloader()
    service = build_service(layout, ledger, transcoder, FakeDetector(), downloader)

    report = await service.run(check_only=True)

    assert report.success is True
    assert report.has_update is True
    assert downloader.calls == []
    assert ledger.get_all_versions() == []


@pytest.mark.asyncio
async def test_forced_run_of_known_version_does_not_reload(layout, ledger, transcoder):
    ledger.add_version(make_metadata("20240212"))
    reloads = []
    downloader = FakeDownloader()
    service = build_service(
        layout, ledger, transcoder, FakeDetector(), downloader,
        [lambda: reloads.append(True)],
    )

    report = await service.run(force_download=True)

    assert report.success is True
    assert report.appended is False
    assert report.reason
    assert downloader.calls[0][3] is True
    assert reloads == []
    assert len(ledger.get_all_versions()) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "detector, downloader, failed_type",
    [
        (FakeDetector(error=ParseError("form changed")), FakeDownloader(), "ParseError"),
        (FakeDetector(), FakeDownloader(error=DownloadError("HTTP 500", status_code=500)), "DownloadError"),
        (FakeDetector(), FakeDownloader(entries={"readme.pdf": b"%PDF"}), "FormatError"),
    ],
)
async def test_failures_leave_the_ledger_untouched(
    layout, ledger, transcoder, detector, downloader, failed_type
):
    reloads = []
    service = build_service(
        layout, ledger, transcoder, detector, downloader,
        [lambda: reloads.append(True)],
    )

    report = await service.run()

    assert report.success is False
    assert report.reason.startswith(failed_type)
    assert report.states[-1] == RunState.IDLE
    assert RunState.LEDGERING not in report.states
    assert ledger.get_all_versions() == []
    assert not layout.ledger_path.exists()
    assert reloads == []


@pytest.mark.asyncio
async def test_transcode_failure_writes_no_dataset_or_ledger(layout, ledger, store):
    class BrokenTranscoder:
        def convert(self, text_path, version):
            raise ProcessingError("disk full")

    service = build_service(
        layout, ledger, BrokenTranscoder(), FakeDetector(), FakeDownloader()
    )

    report = await service.run()

    assert report.success is False
    assert RunState.TRANSCODING in report.states
    assert not store.exists("20240212")
    assert ledger.get_last_version() is None


class ReusingDownloader(FakeDownloader):
    """Serves one payload per fetch and keeps an archive already on disk."""

    def __init__(self, payloads):
        super().__init__()
        self.payloads = list(payloads)
        self.fetches = 0

    async def download_file(self, target, destination, session=None, overwrite=False):
        if not destination.exists() or overwrite:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(self.payloads[self.fetches])
            self.fetches += 1
        return DownloadedArchive(path=destination, byte_size=destination.stat().st_size)


@pytest.mark.asyncio
async def test_unusable_archive_is_fetched_again_on_next_run(tmp_path, layout, ledger, transcoder):
    valid = write_zip(
        tmp_path / "valid.zip",
        {"CPdescarga.txt": (HEADER + "\n".join(LINES)).encode("latin-1")},
    ).read_bytes()
    downloader = ReusingDownloader([b"<html>Session expired</html>", valid])
    service = build_service(layout, ledger, transcoder, FakeDetector(), downloader)

    first = await service.run()

    assert first.success is False
    assert first.reason.startswith("FormatError")
    assert not layout.archive_path("20240212").exists()

    second = await service.run()

    assert second.success is True
    assert second.appended is True
    assert downloader.fetches == 2
    assert ledger.get_last_version().unique_key_count == 2
