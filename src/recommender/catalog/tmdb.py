from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, TypeVar

from recommender.common.clock import SYSTEM_CLOCK, CancelToken, Clock
from recommender.common.logging import get_logger
from recommender.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerPolicy,
    CircuitState,
)
from recommender.resilience.client import HttpJsonClient, ResilientClient
from recommender.resilience.errors import AdmissionDeniedError, MalformedResponseError
from recommender.resilience.rate_limiter import RateLimiter, RateLimitPolicy
from recommender.resilience.retry import RetryExecutor, RetryPolicy
from recommender.storage.cache import ExpiringCache

T = TypeVar("T")


class CatalogDisabledError(AdmissionDeniedError):
    pass


@dataclass(frozen=True)
class CacheSettings:
    ttl_seconds: float
    sweep_interval_seconds: float


@dataclass(frozen=True)
class CatalogConfig:
    enabled: bool
    base_url: str
    image_base_url: str
    api_key: str
    request_timeout_ms: int
    rate_limit: RateLimitPolicy
    circuit_breaker: CircuitBreakerPolicy
    retry: RetryPolicy
    cache: CacheSettings

    @staticmethod
    def from_settings(raw: dict) -> "CatalogConfig":
        catalog = raw.get("catalog", {}) or {}
        rate_limit = catalog.get("rate_limit", {}) or {}
        breaker = catalog.get("circuit_breaker", {}) or {}
        retry = catalog.get("retry", {}) or {}
        cache = catalog.get("cache", {}) or {}
        enabled = bool(catalog.get("enabled", True))
        api_key = os.getenv("TMDB_API_KEY", "") or str(catalog.get("api_key", ""))
        if enabled and not api_key:
            raise ValueError("TMDB_API_KEY required when catalog is enabled")
        return CatalogConfig(
            enabled=enabled,
            base_url=str(catalog.get("base_url", "https://api.themoviedb.org/3")),
            image_base_url=str(
                catalog.get("image_base_url", "https://image.tmdb.org/t/p/w500")
            ),
            api_key=api_key,
            request_timeout_ms=int(catalog.get("request_timeout_ms", 30_000)),
            rate_limit=RateLimitPolicy(
                max_requests=int(rate_limit.get("max_requests", 40)),
                per_seconds=float(rate_limit.get("per_seconds", 10)),
            ),
            circuit_breaker=CircuitBreakerPolicy(
                failure_threshold=int(breaker.get("failure_threshold", 5)),
                cooldown_seconds=float(breaker.get("cooldown_seconds", 60)),
            ),
            retry=RetryPolicy(
                max_attempts=int(retry.get("max_attempts", 3)),
                base_delay_ms=int(retry.get("base_delay_ms", 2_000)),
                max_delay_ms=int(retry.get("max_delay_ms", 30_000)),
            ),
            cache=CacheSettings(
                ttl_seconds=float(cache.get("ttl_seconds", 24 * 60 * 60)),
                sweep_interval_seconds=float(cache.get("sweep_interval_seconds", 30 * 60)),
            ),
        )


@dataclass(frozen=True)
class MovieMatch:
    id: int
    title: str
    release_date: str
    poster_path: str
    vote_average: float


@dataclass(frozen=True)
class ShowMatch:
    id: int
    name: str
    first_air_date: str
    poster_path: str
    vote_average: float


class CatalogClient:
    def __init__(
        self,
        config: CatalogConfig,
        *,
        http: Optional[HttpJsonClient] = None,
        cache: Optional[ExpiringCache] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._clock = clock or SYSTEM_CLOCK
        self._logger = logger or get_logger()
        self._http = http or HttpJsonClient(
            config.base_url, timeout_seconds=max(config.request_timeout_ms, 1000) / 1000
        )
        self._cache = cache
        self._client = ResilientClient(
            "catalog",
            limiter=RateLimiter(config.rate_limit, clock=self._clock, logger=self._logger),
            breaker=CircuitBreaker(
                "catalog", config.circuit_breaker, clock=self._clock, logger=self._logger
            ),
            retry=RetryExecutor(config.retry, clock=self._clock, logger=self._logger),
            logger=self._logger,
        )

    @property
    def config(self) -> CatalogConfig:
        return self._config

    @property
    def breaker_state(self) -> CircuitState:
        return self._client.breaker.state

    def search_movie(
        self, title: str, year: int, cancel: Optional[CancelToken] = None
    ) -> List[MovieMatch]:
        params: dict[str, Any] = {"query": title}
        if year:
            params["year"] = year
        return self._cached(
            f"movie:{title.lower()}:{year}",
            lambda: self._search("/search/movie", params, _parse_movie, cancel),
        )

    def search_tv(
        self, title: str, year: int, cancel: Optional[CancelToken] = None
    ) -> List[ShowMatch]:
        params: dict[str, Any] = {"query": title}
        if year:
            params["first_air_date_year"] = year
        matches = self._cached(
            f"tv:{title.lower()}:{year}",
            lambda: self._search("/search/tv", params, _parse_show, cancel),
        )
        if matches or not year:
            return matches
        # Air-date years often disagree with the library's year.
        self._logger.debug("catalog_tv_retry_without_year", extra={"title": title, "year": year})
        return self.search_tv(title, 0, cancel)

    def poster_url(self, poster_path: str) -> str:
        if not poster_path:
            return ""
        return f"{self._config.image_base_url.rstrip('/')}{poster_path}"

    def close(self) -> None:
        self._http.close()

    def _cached(self, key: str, fetch: Callable[[], List[T]]) -> List[T]:
        if self._cache is not None:
            value, found = self._cache.get(key)
            if found:
                return value
        value = fetch()
        if self._cache is not None:
            self._cache.set(key, value)
        return value

    def _search(
        self,
        path: str,
        params: dict[str, Any],
        parse: Callable[[dict], T],
        cancel: Optional[CancelToken],
    ) -> List[T]:
        if not self._config.enabled:
            raise CatalogDisabledError("Catalog lookups are disabled")
        query = dict(params)
        query["api_key"] = self._config.api_key
        return self._client.call(
            lambda: _parse_results(path, self._http.get_json(path, query), parse),
            cancel=cancel,
        )


def _parse_results(path: str, payload: dict, parse: Callable[[dict], T]) -> List[T]:
    results = payload.get("results")
    if not isinstance(results, list):
        raise MalformedResponseError(f"Missing results list in {path} response")
    try:
        return [parse(item) for item in results]
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponseError(f"Unexpected result entry in {path} response") from exc


def _parse_movie(item: dict) -> MovieMatch:
    return MovieMatch(
        id=int(item["id"]),
        title=str(item.get("title") or ""),
        release_date=str(item.get("release_date") or ""),
        poster_path=str(item.get("poster_path") or ""),
        vote_average=float(item.get("vote_average") or 0.0),
    )


def _parse_show(item: dict) -> ShowMatch:
    return ShowMatch(
        id=int(item["id"]),
        name=str(item.get("name") or ""),
        first_air_date=str(item.get("first_air_date") or ""),
        poster_path=str(item.get("poster_path") or ""),
        vote_average=float(item.get("vote_average") or 0.0),
    )
