from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from recommender.catalog.tmdb import CatalogClient
from recommender.common.clock import CancelToken
from recommender.common.logging import get_logger
from recommender.resilience.errors import (
    AdmissionDeniedError,
    ApiError,
    MalformedResponseError,
    NetworkError,
)

MEDIA_KINDS = ("movie", "tv")

STATUS_MATCHED = "matched"
STATUS_UNMATCHED = "unmatched"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class MediaItem:
    title: str
    year: int
    kind: str

    def __post_init__(self) -> None:
        if self.kind not in MEDIA_KINDS:
            raise ValueError(f"Unsupported media kind: {self.kind}")


@dataclass(frozen=True)
class EnrichedItem:
    item: MediaItem
    status: str
    catalog_id: Optional[int] = None
    poster_url: str = ""
    vote_average: Optional[float] = None
    error: Optional[str] = None


@dataclass
class EnrichmentReport:
    items: List[EnrichedItem] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for enriched in self.items if enriched.status == status)

    @property
    def degraded(self) -> bool:
        return self.count(STATUS_SKIPPED) > 0

    def summary(self) -> dict[str, int]:
        return {
            status: self.count(status)
            for status in (STATUS_MATCHED, STATUS_UNMATCHED, STATUS_SKIPPED, STATUS_FAILED)
        }


def load_items(path: Path) -> List[MediaItem]:
    data = yaml.safe_load(path.read_text()) or []
    if not isinstance(data, list):
        raise ValueError(f"Items file must contain a list: {path}")
    return [
        MediaItem(
            title=str(entry["title"]),
            year=int(entry.get("year") or 0),
            kind=str(entry.get("kind", "movie")),
        )
        for entry in data
    ]


class EnrichmentJob:
    """Looks up catalog metadata for a batch of library items.

    Items are fanned out over a worker pool. When the catalog refuses a
    lookup (breaker open or lookups disabled) the item is skipped so the
    batch still finishes with partial data; cancellation aborts the batch.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        *,
        workers: int = 4,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._catalog = catalog
        self._workers = max(1, workers)
        self._logger = logger or get_logger()

    def run(
        self, items: Iterable[MediaItem], cancel: Optional[CancelToken] = None
    ) -> EnrichmentReport:
        report = EnrichmentReport()
        with ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="enrich"
        ) as pool:
            futures = [pool.submit(self._enrich_one, item, cancel) for item in items]
            try:
                for future in futures:
                    report.items.append(future.result())
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        self._logger.info("enrichment_finished", extra=report.summary())
        return report

    def _enrich_one(self, item: MediaItem, cancel: Optional[CancelToken]) -> EnrichedItem:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            if item.kind == "movie":
                movies = self._catalog.search_movie(item.title, item.year, cancel)
                if not movies:
                    return EnrichedItem(item=item, status=STATUS_UNMATCHED)
                best = movies[0]
                return EnrichedItem(
                    item=item,
                    status=STATUS_MATCHED,
                    catalog_id=best.id,
                    poster_url=self._catalog.poster_url(best.poster_path),
                    vote_average=best.vote_average,
                )
            shows = self._catalog.search_tv(item.title, item.year, cancel)
            if not shows:
                return EnrichedItem(item=item, status=STATUS_UNMATCHED)
            show = shows[0]
            return EnrichedItem(
                item=item,
                status=STATUS_MATCHED,
                catalog_id=show.id,
                poster_url=self._catalog.poster_url(show.poster_path),
                vote_average=show.vote_average,
            )
        except AdmissionDeniedError as exc:
            self._logger.info(
                "enrichment_skipped",
                extra={"title": item.title, "reason": str(exc)},
            )
            return EnrichedItem(item=item, status=STATUS_SKIPPED, error=str(exc))
        except (ApiError, NetworkError, MalformedResponseError) as exc:
            self._logger.warning(
                "enrichment_failed", extra={"title": item.title, "error": str(exc)}
            )
            return EnrichedItem(item=item, status=STATUS_FAILED, error=str(exc))
