"""
The core application service and pipeline, containing pure business logic.

This module defines the main orchestrator (IngestionService), which runs the
update check and drives one run through its state machine, and the pipeline
(ExtractProcessingPipeline) that turns one detected publication into a
persisted dataset and its ledger metadata.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tqdm.contrib.logging import logging_redirect_tqdm

from .domain import (
    ArchiveDownloader,
    ArchiveExtractor,
    DatasetTranscoder,
    ExtractMetadata,
    RunReport,
    RunState,
    UpdateCheck,
    UpdateDetector,
    VersionLedger,
)
from .exceptions import FormatError, PostalRegistryError
from .layout import ArtifactLayout

logger = logging.getLogger(__name__)

ReloadListener = Callable[[], object]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExtractProcessingPipeline:
    """Encapsulates the full processing pipeline for a single publication."""

    def __init__(
        self,
        downloader: ArchiveDownloader,
        extractor: ArchiveExtractor,
        transcoder: DatasetTranscoder,
        layout: ArtifactLayout,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initializes the pipeline with necessary dependencies (ports)."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.downloader = downloader
        self.extractor = extractor
        self.transcoder = transcoder
        self.layout = layout
        self.clock = clock

    async def run(
        self,
        check: UpdateCheck,
        on_state: Callable[[RunState], None],
        overwrite: bool = False,
    ) -> Tuple[ExtractMetadata, Dict[str, Path]]:
        """Executes the sequential steps for processing one publication.

        Extraction and transcoding are blocking and run in a worker thread.

        Args:
            check: The detection result naming the version and session.
            on_state: Called as each step starts.
            overwrite: Re-download even if the archive is already on disk.

        Returns:
            The ledger metadata for the version and the files it produced.
        """

        version = check.current_version
        self.layout.ensure_directories()
        self.logger.info(f"Starting pipeline for version {version}...")

        # Step 1: Download (UpdateCheck -> DownloadedArchive)
        on_state(RunState.DOWNLOADING)
        archive = await self.downloader.download_file(
            check.target_url,
            self.layout.archive_path(version),
            session=check.session,
            overwrite=overwrite,
        )
        download_timestamp = self.clock()

        # Step 2: Extract and rename (DownloadedArchive -> {version}.txt)
        on_state(RunState.EXTRACTING)
        try:
            extracted = await asyncio.to_thread(
                self.extractor.extract, archive.path, self.layout.downloads_dir
            )
        except FormatError:
            # Not a usable archive; the next run must fetch it again.
            self.logger.warning(f"Discarding unusable archive {archive.path.name}")
            archive.path.unlink(missing_ok=True)
            raise
        text_path = await asyncio.to_thread(
            self.extractor.rename_extract, extracted, version
        )

        # Step 3: Transcode ({version}.txt -> {version}.json)
        on_state(RunState.TRANSCODING)
        conversion = await asyncio.to_thread(
            self.transcoder.convert, text_path, version
        )

        metadata = ExtractMetadata(
            version=version,
            source_file_date=check.source_file_date,
            download_timestamp=download_timestamp,
            byte_size=archive.byte_size,
            record_count=conversion.record_count,
            unique_key_count=conversion.unique_key_count,
            file_name=text_path.name,
        )
        files = {"zip": archive.path, "txt": text_path, "json": conversion.path}
        return metadata, files


class IngestionService:
    """
    Orchestrates one ingestion run and signals reloads.

    At most one run may be in flight; the caller that schedules runs is
    responsible for not starting another before the previous one returns.
    """

    def __init__(
        self,
        detector: UpdateDetector,
        pipeline: ExtractProcessingPipeline,
        ledger: VersionLedger,
        reload_listeners: Sequence[ReloadListener] = (),
    ):
        """Initializes the service and the reusable processing pipeline."""
        self.detector = detector
        self.pipeline = pipeline
        self.ledger = ledger
        self.reload_listeners = list(reload_listeners)

    def _signal_reload(self):
        for listener in self.reload_listeners:
            listener()

    async def run(
        self, force_download: bool = False, check_only: bool = False
    ) -> RunReport:
        """
        Executes one run: detect, and if needed download through ledger.

        Failures never escape as exceptions; they end the run with a failed
        report, and since the ledger is written last a failed run leaves it
        untouched.

        Args:
            force_download: Process the current publication even if its
                version is already the last known one.
            check_only: Stop after detection.

        Returns:
            A report of the outcome and the states the run went through.
        """

        states: List[RunState] = [RunState.IDLE]

        def transition(state: RunState):
            states.append(state)
            logger.info(f"Run state: {state.value}")

        version: Optional[str] = None
        try:
            transition(RunState.DETECTING)
            last = self.ledger.get_last_version()
            last_version = last.version if last else None
            check = await self.detector.check_for_update(last_version)
            version = check.current_version

            if not check.has_update and not force_download:
                logger.info(f"No new version available (last: {last_version}).")
                transition(RunState.NO_UPDATE)
                transition(RunState.IDLE)
                return RunReport(
                    success=True, version=last_version, states=tuple(states)
                )

            if check_only:
                logger.info(f"New version available: {check.current_version}")
                transition(RunState.IDLE)
                return RunReport(
                    success=True,
                    has_update=check.has_update,
                    version=version,
                    states=tuple(states),
                )

            logger.info(f"Processing version {version}...")
            with logging_redirect_tqdm():
                metadata, files = await self.pipeline.run(
                    check, transition, overwrite=force_download
                )

            transition(RunState.LEDGERING)
            appended = self.ledger.add_version(metadata)

            reason = None
            if appended:
                transition(RunState.RELOAD_SIGNALED)
                self._signal_reload()
            else:
                reason = f"Version {version} was already recorded"

        except PostalRegistryError as e:
            logger.error(f"Run failed: {type(e).__name__}: {e}")
            transition(RunState.IDLE)
            return RunReport(
                success=False,
                has_update=False,
                version=version,
                reason=f"{type(e).__name__}: {e}",
                states=tuple(states),
            )

        transition(RunState.IDLE)
        logger.info(
            f"Run completed: version {version}, "
            f"{metadata.byte_size / 1024 / 1024:.2f} MB downloaded, "
            f"{metadata.record_count:,} records, "
            f"{metadata.unique_key_count:,} postal codes."
        )
        return RunReport(
            success=True,
            has_update=check.has_update,
            version=version,
            reason=reason,
            appended=appended,
            files=files,
            states=tuple(states),
        )
