"""
Dependency Injection container for the postal registry.

This container uses the `dependency-injector` library to wire together all
the components of the application, such as services, infrastructure adapters
and the serving cache, based on the application's configuration.
"""

from dependency_injector import containers, providers
import httpx

from ..application.cache import DatasetCache
from ..application.domain import *
from ..application.layout import ArtifactLayout
from ..application.service import ExtractProcessingPipeline, IngestionService
from ..settings import settings

from .decorators import BackoffPolicy
from .detector import HttpUpdateDetector
from .downloader import HttpArchiveDownloader
from .ledger import JsonVersionLedger
from .page_models import DownloadSelection
from .processing import FieldLayout, FixedFormatTranscoder, ZipArchiveExtractor
from .storage import JsonDatasetStore


class Container(containers.DeclarativeContainer):
    """DI container for wiring the application components."""

    cli_args = providers.Configuration()

    config = providers.Object(settings)

    http_client = providers.Singleton(httpx.AsyncClient, follow_redirects=True)

    layout = providers.Singleton(
        ArtifactLayout.from_dirs,
        downloads_dir=config().paths.downloads_dir,
        data_dir=config().paths.data_dir,
        archive_prefix=config().downloader.archive_prefix,
    )

    retry_policy = providers.Singleton(
        BackoffPolicy,
        max_retries=config().retry.max_retries,
        base_delay=config().retry.base_delay,
        max_delay=config().retry.max_delay,
    )

    detector: providers.Factory[UpdateDetector] = providers.Factory(
        HttpUpdateDetector,
        client=http_client,
        url=config().source.url,
        user_agent=config().source.user_agent,
        timeout=config().source.timeout,
        retry_policy=retry_policy,
    )

    download_selection = providers.Factory(
        DownloadSelection,
        state=config().source.form.state,
        file_format=config().source.form.file_format,
        button_x=config().source.form.button_x,
        button_y=config().source.form.button_y,
    )

    downloader: providers.Factory[ArchiveDownloader] = providers.Factory(
        HttpArchiveDownloader,
        client=http_client,
        user_agent=config().source.user_agent,
        timeout=config().source.timeout,
        chunk_size=config().downloader.chunk_size,
        retry_policy=retry_policy,
        selection=download_selection,
        show_progress=cli_args.show_progress,
    )

    extractor: providers.Factory[ArchiveExtractor] = providers.Factory(
        ZipArchiveExtractor,
        extension=config().transcoder.extension,
    )

    dataset_store: providers.Singleton[DatasetStore] = providers.Singleton(
        JsonDatasetStore,
        layout=layout,
    )

    field_layout = providers.Factory(
        FieldLayout,
        header_lines=config().transcoder.header_lines,
        min_fields=config().transcoder.min_fields,
    )

    transcoder: providers.Factory[DatasetTranscoder] = providers.Factory(
        FixedFormatTranscoder,
        store=dataset_store,
        encoding=config().transcoder.encoding,
        layout=field_layout,
        code_width=config().transcoder.code_width,
    )

    ledger: providers.Singleton[VersionLedger] = providers.Singleton(
        JsonVersionLedger,
        layout=layout,
    )

    cache = providers.Singleton(
        DatasetCache,
        ledger=ledger,
        store=dataset_store,
        search_limit=config().cache.search_limit,
        code_width=config().transcoder.code_width,
    )

    pipeline = providers.Factory(
        ExtractProcessingPipeline,
        downloader=downloader,
        extractor=extractor,
        transcoder=transcoder,
        layout=layout,
    )

    ingestion_service = providers.Factory(
        IngestionService,
        detector=detector,
        pipeline=pipeline,
        ledger=ledger,
        reload_listeners=providers.List(cache.provided.reload),
    )
