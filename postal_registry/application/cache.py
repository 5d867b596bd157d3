"""
The serving-side dataset cache and the readiness probe.

The cache owns exactly one immutable dataset at a time. ``reload`` builds the
replacement completely before installing it with a single reference
assignment, so a concurrent reader always sees either the old dataset or the
new one in full.
"""

import dataclasses
import logging
import threading
from types import MappingProxyType
from typing import List, Optional, Union

from .domain import (
    DEFAULT_CODE_WIDTH,
    Dataset,
    DatasetStats,
    DatasetStore,
    Page,
    PostalRecord,
    Readiness,
    SearchCriteria,
    VersionIdentifier,
    VersionLedger,
    normalize_code,
)
from .exceptions import DataUnavailable, PostalRegistryError

DEFAULT_SEARCH_LIMIT = 100


def check_readiness(ledger: VersionLedger, store: DatasetStore) -> Readiness:
    """Ready means the pointer exists and its dataset file is on storage."""
    try:
        last = ledger.get_last_version()
    except PostalRegistryError as e:
        return Readiness(ready=False, reason=str(e))

    if last is None:
        return Readiness(ready=False, reason="No postal code data available")
    if not store.exists(last.version):
        return Readiness(
            ready=False, version=last.version, reason="Dataset file not found"
        )
    return Readiness(ready=True, version=last.version)


@dataclasses.dataclass(frozen=True)
class _Snapshot:
    version: VersionIdentifier
    records: Dataset


def _contains(value: str, needle: Optional[str]) -> bool:
    return not needle or needle.lower() in value.lower()


class DatasetCache:
    """In-memory lookups over the dataset named by the ledger's pointer."""

    def __init__(
        self,
        ledger: VersionLedger,
        store: DatasetStore,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        code_width: int = DEFAULT_CODE_WIDTH,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.ledger = ledger
        self.store = store
        self.search_limit = search_limit
        self.code_width = code_width
        self._snapshot: Optional[_Snapshot] = None
        self._reload_lock = threading.Lock()

    @property
    def version(self) -> Optional[VersionIdentifier]:
        snapshot = self._snapshot
        return snapshot.version if snapshot else None

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def load(self) -> bool:
        """
        Loads the dataset named by the pointer.

        If the pointer or its dataset is missing or unreadable, the cache
        keeps whatever it held before (nothing, on first load).

        Returns:
            True if a dataset was installed.
        """
        with self._reload_lock:
            try:
                last = self.ledger.get_last_version()
                if last is None:
                    self.logger.warning("No postal code data available.")
                    return False

                dataset = self.store.load(last.version)
                if dataset is None:
                    self.logger.warning(
                        f"Dataset for version {last.version} not found."
                    )
                    return False
            except PostalRegistryError as e:
                self.logger.error(f"Could not load postal code data: {e}")
                return False

            self._snapshot = _Snapshot(
                version=last.version, records=MappingProxyType(dict(dataset))
            )

        self.logger.info(
            f"Loaded version {last.version} with {len(dataset):,} postal codes."
        )
        return True

    def reload(self) -> Optional[DatasetStats]:
        """Re-reads the pointer and swaps in its dataset; returns new stats."""
        self.logger.info("Reloading postal code data...")
        self.load()
        return self.get_stats()

    def _require_snapshot(self) -> _Snapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise DataUnavailable("Postal code data is not available")
        return snapshot

    def readiness(self) -> Readiness:
        return check_readiness(self.ledger, self.store)

    def get_by_code(self, code: Union[str, int]) -> Optional[PostalRecord]:
        """
        Exact-match lookup; ``"1000"`` and ``"01000"`` are the same code.

        Raises:
            DataUnavailable: If no dataset is loaded.
        """
        snapshot = self._require_snapshot()
        return snapshot.records.get(normalize_code(code, self.code_width))

    lookup = get_by_code

    def search(self, criteria: SearchCriteria) -> List[PostalRecord]:
        """
        Scans for records matching every given filter, up to the result cap.

        Raises:
            DataUnavailable: If no dataset is loaded.
        """
        snapshot = self._require_snapshot()
        results: List[PostalRecord] = []

        for record in snapshot.records.values():
            if not _contains(record.state, criteria.state):
                continue
            if not _contains(record.city, criteria.city):
                continue
            if not _contains(record.municipality, criteria.municipality):
                continue
            if criteria.neighborhood and not any(
                _contains(name, criteria.neighborhood)
                for name in record.neighborhoods
            ):
                continue

            results.append(record)
            if len(results) >= self.search_limit:
                break

        return results

    def get_all(self, limit: int = 100, offset: int = 0) -> Page:
        """
        Returns one page of records in dataset order.

        Raises:
            DataUnavailable: If no dataset is loaded.
        """
        snapshot = self._require_snapshot()
        records = list(snapshot.records.values())
        return Page(
            total=len(records),
            limit=limit,
            offset=offset,
            data=records[offset:offset + limit],
        )

    def get_stats(self) -> Optional[DatasetStats]:
        """Returns dataset totals, or None when nothing is loaded."""
        snapshot = self._snapshot
        if snapshot is None:
            return None

        states, cities, municipalities = set(), set(), set()
        total_neighborhoods = 0
        for record in snapshot.records.values():
            states.add(record.state)
            cities.add(record.city)
            municipalities.add(record.municipality)
            total_neighborhoods += len(record.neighborhoods)

        return DatasetStats(
            version=snapshot.version,
            total_postal_codes=len(snapshot.records),
            total_states=len(states),
            total_cities=len(cities),
            total_municipalities=len(municipalities),
            total_neighborhoods=total_neighborhoods,
        )
