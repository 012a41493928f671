"""
Per-country memoization of parsed gazetteer data.

Each service owns one cache instance; there is no module-level cache.

Concurrency: the first caller for a country registers a Future under a short
lock and parses outside it; concurrent callers for the same country wait on
that Future and receive the same collection object. Different countries parse
in parallel.

Failed loads are remembered as well. A malformed source stays failed until the
process restarts; a missing source is retried once `retry_after_s` has passed,
so data prepared after startup is still picked up.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Union

from local_geocoder.errors import DataUnavailable, GeocoderError, MalformedSource
from local_geocoder.gazetteer import CityCollection, normalize_country_code

logger = logging.getLogger(__name__)

Loader = Callable[[str], CityCollection]


class CountryCache:
    def __init__(
        self,
        loader: Loader,
        max_workers: int = 4,
        retry_after_s: float = 60.0,
        merge_cache_size: int = 32,
    ):
        self._loader = loader
        self._max_workers = max(1, max_workers)
        self._retry_after_s = retry_after_s
        self._merge_cache_size = max(1, merge_cache_size)
        self._lock = threading.Lock()
        self._entries: dict[str, Future] = {}
        # code -> (error, monotonic retry deadline or None for permanent)
        self._failures: dict[str, tuple[GeocoderError, Optional[float]]] = {}
        self._merged: OrderedDict[tuple[str, ...], CityCollection] = OrderedDict()
        self._load_count = 0

    @property
    def load_count(self) -> int:
        """Number of completed parses."""
        return self._load_count

    def is_loaded(self, country_code: str) -> bool:
        code = normalize_country_code(country_code)
        with self._lock:
            future = self._entries.get(code)
        return future is not None and future.done() and future.exception() is None

    def loaded_countries(self) -> list[str]:
        with self._lock:
            items = list(self._entries.items())
        return sorted(code for code, fut in items if fut.done() and fut.exception() is None)

    def failed_countries(self) -> list[str]:
        """Countries whose last load failed and are not yet due for a retry."""
        with self._lock:
            return sorted(code for code in list(self._failures) if self._live_failure(code))

    def city_count(self) -> int:
        with self._lock:
            futures = list(self._entries.values())
        return sum(len(f.result()) for f in futures if f.done() and f.exception() is None)

    def get_or_load(self, country_code: str) -> CityCollection:
        """Return the cached collection, parsing it at most once per country."""
        code = normalize_country_code(country_code)
        if code is None:
            raise DataUnavailable(f"Not a country code: {country_code!r}", (str(country_code),))

        with self._lock:
            future = self._entries.get(code)
            owner = future is None
            if owner:
                failure = self._live_failure(code)
                if failure is not None:
                    raise DataUnavailable(f"{code} failed to load earlier: {failure}", (code,))
                future = Future()
                self._entries[code] = future

        if not owner:
            return future.result()

        try:
            collection = self._loader(code)
        except GeocoderError as e:
            with self._lock:
                self._entries.pop(code, None)
                self._remember_failure(code, e)
            logger.warning("Failed to load cities for %s: %s", code, e)
            future.set_exception(e)
            raise
        except BaseException as e:
            with self._lock:
                self._entries.pop(code, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._load_count += 1
        future.set_result(collection)
        return collection

    def get_or_load_many(self, country_codes: Iterable[str]) -> CityCollection:
        """
        Merge the collections of several countries in requested order.

        Each failing country is left out; a fresh failure is logged once by
        get_or_load. Raises DataUnavailable only if every requested country
        failed. Merges are reused for the same set of loaded countries.
        """
        codes = list(dict.fromkeys(c.strip().upper() for c in country_codes if c and c.strip()))
        if not codes:
            return CityCollection()
        if len(codes) == 1:
            return self._get_single(codes[0])

        outcomes: dict[str, Union[CityCollection, GeocoderError]] = {}
        pending = [code for code in codes if not self._is_settled(code)]
        if len(pending) > 1:
            workers = min(self._max_workers, len(pending))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="country-load") as pool:
                outcomes.update(zip(pending, pool.map(self._attempt, pending)))
        for code in codes:
            if code not in outcomes:
                outcomes[code] = self._attempt(code)

        loaded = tuple(code for code in codes if isinstance(outcomes[code], CityCollection))
        for code in codes:
            if code not in loaded:
                logger.debug("Leaving %s out of the merge: %s", code, outcomes[code])
        if not loaded:
            raise DataUnavailable(
                f"No gazetteer data available for {', '.join(codes)}", tuple(codes)
            )
        if len(loaded) == 1:
            return outcomes[loaded[0]]
        return self._merged_for(loaded, outcomes)

    # ── Helpers ───────────────────────────────────────────────────────

    def _get_single(self, code: str) -> CityCollection:
        try:
            return self.get_or_load(code)
        except GeocoderError as e:
            raise DataUnavailable(f"No gazetteer data available for {code}", (code,)) from e

    def _attempt(self, code: str) -> Union[CityCollection, GeocoderError]:
        try:
            return self.get_or_load(code)
        except GeocoderError as e:
            return e

    def _is_settled(self, code: str) -> bool:
        code = normalize_country_code(code)
        if code is None:
            return False
        with self._lock:
            future = self._entries.get(code)
            if future is not None:
                return future.done()
            return self._live_failure(code) is not None

    def _live_failure(self, code: str) -> Optional[GeocoderError]:
        # Caller holds self._lock
        entry = self._failures.get(code)
        if entry is None:
            return None
        error, retry_at = entry
        if retry_at is not None and time.monotonic() >= retry_at:
            del self._failures[code]
            return None
        return error

    def _remember_failure(self, code: str, error: GeocoderError) -> None:
        # Caller holds self._lock
        if isinstance(error, MalformedSource):
            self._failures[code] = (error, None)
        elif self._retry_after_s > 0:
            self._failures[code] = (error, time.monotonic() + self._retry_after_s)

    def _merged_for(
        self,
        loaded: tuple[str, ...],
        collections: dict[str, Union[CityCollection, GeocoderError]],
    ) -> CityCollection:
        # Loaded collections never change, so a merge keyed by its members stays valid
        with self._lock:
            merged = self._merged.get(loaded)
            if merged is not None:
                self._merged.move_to_end(loaded)
                return merged

        merged = CityCollection.merge(collections[code] for code in loaded)
        with self._lock:
            merged = self._merged.setdefault(loaded, merged)
            self._merged.move_to_end(loaded)
            while len(self._merged) > self._merge_cache_size:
                self._merged.popitem(last=False)
        return merged
