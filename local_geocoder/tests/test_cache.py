"""
Tests for the per-country cache: idempotence, concurrency and
multi-country composition.
"""

from __future__ import annotations

import threading
import time

import pytest

from conftest import make_row, write_country
from local_geocoder.cache import CountryCache
from local_geocoder.errors import DataUnavailable, GeocoderError, MalformedSource
from local_geocoder.gazetteer import City, CityCollection


class TestGetOrLoad:
    def test_second_call_does_not_reparse(self, counting_loader):
        cache = CountryCache(counting_loader)
        first = cache.get_or_load("DE")
        second = cache.get_or_load("DE")
        assert first is second
        assert list(first) == list(second)
        assert counting_loader.calls == {"DE": 1}
        assert cache.load_count == 1

    def test_code_is_normalized(self, counting_loader):
        cache = CountryCache(counting_loader)
        assert cache.get_or_load("de") is cache.get_or_load(" DE ")
        assert counting_loader.calls == {"DE": 1}

    def test_loaded_countries(self, counting_loader):
        cache = CountryCache(counting_loader)
        cache.get_or_load("FR")
        cache.get_or_load("DE")
        assert cache.loaded_countries() == ["DE", "FR"]
        assert cache.is_loaded("de")
        assert not cache.is_loaded("IT")
        assert cache.city_count() == len(cache.get_or_load("DE")) + len(cache.get_or_load("FR"))

    def test_missing_country_failure_is_remembered(self, counting_loader):
        cache = CountryCache(counting_loader)
        with pytest.raises(DataUnavailable):
            cache.get_or_load("IT")
        with pytest.raises(DataUnavailable):
            cache.get_or_load("IT")
        assert counting_loader.calls == {"IT": 1}
        assert not cache.is_loaded("IT")
        assert cache.failed_countries() == ["IT"]

    def test_missing_country_is_retried_after_interval(self, counting_loader, data_dir):
        cache = CountryCache(counting_loader, retry_after_s=0.5)
        with pytest.raises(DataUnavailable):
            cache.get_or_load("IT")
        write_country(data_dir, "IT", [make_row("Roma", 41.89193, 12.51133, "PPLC", 2318895, country="IT")])
        with pytest.raises(DataUnavailable):
            cache.get_or_load("IT")
        time.sleep(0.6)
        assert [c.name for c in cache.get_or_load("IT")] == ["Roma"]
        assert counting_loader.calls == {"IT": 2}
        assert cache.failed_countries() == []

    def test_retry_interval_of_zero_always_retries(self, counting_loader):
        cache = CountryCache(counting_loader, retry_after_s=0)
        for _ in range(2):
            with pytest.raises(DataUnavailable):
                cache.get_or_load("IT")
        assert counting_loader.calls == {"IT": 2}

    def test_malformed_source_failure_is_permanent(self, counting_loader, data_dir):
        write_country(data_dir, "NL", ["garbage", "more garbage"])
        cache = CountryCache(counting_loader, retry_after_s=0)
        with pytest.raises(MalformedSource):
            cache.get_or_load("NL")
        with pytest.raises(DataUnavailable):
            cache.get_or_load("NL")
        assert counting_loader.calls == {"NL": 1}

    def test_invalid_code(self, counting_loader):
        cache = CountryCache(counting_loader)
        with pytest.raises(DataUnavailable):
            cache.get_or_load("Germany")
        assert counting_loader.calls == {}

    def test_isolated_instances(self, counting_loader):
        a = CountryCache(counting_loader)
        b = CountryCache(counting_loader)
        a.get_or_load("DE")
        assert not b.is_loaded("DE")


class SlowLoader:
    def __init__(self, delay: float = 0.2, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, code: str) -> CityCollection:
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        if self.fail:
            raise MalformedSource(f"bad data for {code}")
        return CityCollection([City("Berlin", code, 52.52, 13.405)], country=code)


class TestConcurrency:
    def _run_concurrently(self, cache: CountryCache, code: str, n: int = 8):
        barrier = threading.Barrier(n)
        results: list = [None] * n
        errors: list = [None] * n

        def worker(i: int) -> None:
            barrier.wait()
            try:
                results[i] = cache.get_or_load(code)
            except Exception as e:
                errors[i] = e

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        return results, errors

    def test_single_parse_under_concurrent_first_access(self):
        loader = SlowLoader()
        cache = CountryCache(loader)
        results, errors = self._run_concurrently(cache, "DE")
        assert errors == [None] * len(errors)
        assert loader.calls == 1
        assert all(r is results[0] for r in results)

    def test_concurrent_waiters_all_see_the_failure(self):
        loader = SlowLoader(fail=True)
        cache = CountryCache(loader)
        results, errors = self._run_concurrently(cache, "DE")
        assert results == [None] * len(results)
        assert all(isinstance(e, GeocoderError) for e in errors)
        assert loader.calls == 1

    def test_different_countries_load_in_parallel(self):
        loader = SlowLoader(delay=0.3)
        cache = CountryCache(loader, max_workers=4)
        start = time.monotonic()
        merged = cache.get_or_load_many(["DE", "FR", "IT", "ES"])
        elapsed = time.monotonic() - start
        assert len(merged) == 4
        assert loader.calls == 4
        assert elapsed < 1.0


class TestGetOrLoadMany:
    def test_merges_in_requested_order(self, counting_loader):
        cache = CountryCache(counting_loader)
        merged = cache.get_or_load_many(["FR", "DE"])
        fr_len = len(cache.get_or_load("FR"))
        assert {c.country for c in merged[:fr_len]} == {"FR"}
        assert {c.country for c in merged[fr_len:]} == {"DE"}

    def test_duplicates_are_loaded_once(self, counting_loader):
        cache = CountryCache(counting_loader)
        merged = cache.get_or_load_many(["DE", "de", "DE"])
        assert len(merged) == len(cache.get_or_load("DE"))
        assert counting_loader.calls == {"DE": 1}

    def test_partial_failure_is_a_warning(self, counting_loader, caplog):
        cache = CountryCache(counting_loader)
        with caplog.at_level("WARNING"):
            merged = cache.get_or_load_many(["DE", "IT"])
        assert merged.countries == {"DE"}
        assert "IT" in caplog.text

    def test_total_failure_raises(self, counting_loader):
        cache = CountryCache(counting_loader)
        with pytest.raises(DataUnavailable) as exc:
            cache.get_or_load_many(["IT", "ES"])
        assert set(exc.value.countries) == {"IT", "ES"}

    def test_single_missing_country_raises(self, counting_loader):
        cache = CountryCache(counting_loader)
        with pytest.raises(DataUnavailable):
            cache.get_or_load_many(["IT"])

    def test_empty_request(self, counting_loader):
        cache = CountryCache(counting_loader)
        assert len(cache.get_or_load_many([])) == 0
        assert counting_loader.calls == {}

    def test_single_survivor_is_returned_as_is(self, counting_loader):
        cache = CountryCache(counting_loader)
        assert cache.get_or_load_many(["DE", "IT"]) is cache.get_or_load("DE")

    def test_repeated_partial_failure_does_no_extra_work(self, counting_loader, data_dir, caplog):
        write_country(data_dir, "NL", ["garbage", "more garbage"])
        cache = CountryCache(counting_loader)
        with caplog.at_level("WARNING"):
            merged = {id(cache.get_or_load_many(["DE", "FR", "NL", "IT"])) for _ in range(5)}
        assert len(merged) == 1
        assert counting_loader.calls == {"DE": 1, "FR": 1, "NL": 1, "IT": 1}
        assert caplog.text.count("Failed to load cities for NL") == 1
        assert caplog.text.count("Failed to load cities for IT") == 1

    def test_merge_is_keyed_by_loaded_countries(self, counting_loader):
        cache = CountryCache(counting_loader)
        first = cache.get_or_load_many(["DE", "FR"])
        assert cache.get_or_load_many(["DE", "IT", "FR"]) is first

    def test_merge_cache_is_bounded(self, counting_loader):
        cache = CountryCache(counting_loader, merge_cache_size=1)
        first = cache.get_or_load_many(["DE", "FR"])
        cache.get_or_load_many(["FR", "DE"])
        again = cache.get_or_load_many(["DE", "FR"])
        assert again is not first
        assert list(again) == list(first)
