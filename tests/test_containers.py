from dependency_injector import providers

from postal_registry.application.layout import ArtifactLayout
from postal_registry.application.service import IngestionService
from postal_registry.infrastructure.containers import Container
from postal_registry.infrastructure.detector import HttpUpdateDetector
from postal_registry.infrastructure.downloader import HttpArchiveDownloader


def make_container(tmp_path):
    container = Container()
    container.cli_args.from_dict({"show_progress": False})
    container.layout.override(
        providers.Object(ArtifactLayout(tmp_path / "downloads", tmp_path / "data"))
    )
    return container


def test_service_is_wired_from_settings(tmp_path):
    container = make_container(tmp_path)

    service = container.ingestion_service()

    assert isinstance(service, IngestionService)
    assert isinstance(service.detector, HttpUpdateDetector)
    assert isinstance(service.pipeline.downloader, HttpArchiveDownloader)
    assert service.pipeline.downloader.show_progress is False
    assert service.pipeline.layout.data_dir == tmp_path / "data"


def test_reload_listener_targets_the_shared_cache(tmp_path):
    container = make_container(tmp_path)

    service = container.ingestion_service()
    cache = container.cache()

    assert len(service.reload_listeners) == 1
    assert service.reload_listeners[0].__self__ is cache
    assert cache.ledger is container.ledger()
    assert service.ledger is container.ledger()
