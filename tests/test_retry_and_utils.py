"""
Test Suite — Retry Policy & Utilities
======================================

Retry/backoff behaviour, the insert-if-absent cache, base/quote selection,
date helpers and raw topic decoding.

Run:  python -m pytest tests/test_retry_and_utils.py -v
"""

import threading

import pytest

from lp_pnl_monitor.exceptions import (
    ConfigError, InvalidRangeError, PriceUnavailableError, RetryExhaustedError, UnsupportedDexError
)
from lp_pnl_monitor.retry import RetryPolicy
from lp_pnl_monitor.utils import (
    KeyValueCache, address_to_topic, block_time_to_date, data_words, get_dex_variant,
    int_to_topic, iso_to_timestamp, select_base_and_quote, timestamp_to_iso, to_hex_str,
    topic_to_address, topic_to_int
)

from fakes import CAKE, USDT, WBNB, signed_topic

USDC = "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d"


class Flaky:
    """Fails `failures` times, then returns `value`"""

    def __init__(self, failures, value="ok", error=ConnectionError):
        self.failures = failures
        self.value = value
        self.error = error
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return self.value


# ── RetryPolicy ─────────────────────────────────────────────────────────

class TestRetryPolicy:

    def _policy(self, sleeps, **kwargs):
        return RetryPolicy(sleep=sleeps.append, **kwargs)

    def test_success_first_try(self):
        sleeps = []
        assert self._policy(sleeps).call(lambda: 42) == 42
        assert sleeps == []

    def test_recovers_after_failures(self):
        sleeps = []
        fn = Flaky(2)
        assert self._policy(sleeps, max_attempts=3, delay=0.5).call(fn) == "ok"
        assert fn.calls == 3
        assert sleeps == [0.5, 0.5]

    def test_linear_backoff(self):
        sleeps = []
        with pytest.raises(RetryExhaustedError):
            self._policy(sleeps, max_attempts=4, delay=2.0, backoff="linear").call(Flaky(10))
        assert sleeps == [2.0, 4.0, 6.0]

    def test_exhaustion_keeps_last_error(self):
        with pytest.raises(RetryExhaustedError) as exc_info:
            self._policy([], max_attempts=2).call(Flaky(5), description="get_logs(0-9)")
        err = exc_info.value
        assert err.attempts == 2
        assert err.description == "get_logs(0-9)"
        assert str(err.last_error) == "failure 2"
        assert err.__cause__ is err.last_error

    @pytest.mark.parametrize("error", [ConfigError("bad"), InvalidRangeError(10, 10)])
    def test_logic_errors_fail_fast(self, error):
        calls = []

        def fn():
            calls.append(1)
            raise error

        with pytest.raises(type(error)):
            self._policy([], max_attempts=5).call(fn)
        assert len(calls) == 1

    def test_price_unavailable_is_retried(self):
        fn = Flaky(1, value=1.0, error=PriceUnavailableError)
        assert self._policy([], max_attempts=2).call(fn) == 1.0

    def test_passes_arguments(self):
        assert self._policy([]).call(lambda a, b=0: a + b, 1, b=2) == 3

    def test_from_config(self):
        policy = RetryPolicy.from_config({"attempts": 5, "delay": 2, "backoff": "linear"})
        assert (policy.max_attempts, policy.delay, policy.backoff) == (5, 2.0, "linear")

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"backoff": "exponential"}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


# ── KeyValueCache ───────────────────────────────────────────────────────

class TestKeyValueCache:

    def test_first_value_wins(self):
        cache = KeyValueCache()
        assert cache.insert_if_absent("k", 1) == 1
        assert cache.insert_if_absent("k", 2) == 1
        assert cache.get("k") == 1
        assert len(cache) == 1

    def test_get_or_load_loads_once(self):
        cache = KeyValueCache()
        loads = []
        for _ in range(3):
            cache.get_or_load("k", lambda: loads.append(1) or 7)
        assert loads == [1]
        assert "k" in cache

    def test_max_size_evicts_oldest(self):
        cache = KeyValueCache(max_size=2)
        for key in ("a", "b", "c"):
            cache.insert_if_absent(key, key.upper())
        assert len(cache) == 2
        assert "a" not in cache
        assert cache.get("c") == "C"

    def test_concurrent_inserts_agree(self):
        cache = KeyValueCache()
        results = []

        def worker(value):
            results.append(cache.insert_if_absent("price", value))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(set(results)) == 1


# ── DEX variants and base/quote ─────────────────────────────────────────

class TestDexVariants:

    def test_known_variants(self):
        assert get_dex_variant("pancake")["pool_name"] == "PancakeSwap V3"
        assert get_dex_variant("Uniswap")["position_manager"] == "0x7b8A01B39D58278b5DE7e48c8449c9f4F5170613"

    @pytest.mark.parametrize("dex_type", ["curve", "", None])
    def test_unknown_variant(self, dex_type):
        with pytest.raises(UnsupportedDexError):
            get_dex_variant(dex_type)


class TestSelectBaseAndQuote:

    @pytest.mark.parametrize("token0,token1,expected", [
        (WBNB, USDT, (WBNB, USDT, "token0")),
        (USDT, WBNB, (WBNB, USDT, "token1")),
        (USDC, USDT, (USDC, USDT, "token0")),
        (USDT, USDC, (USDC, USDT, "token1")),
        (CAKE, WBNB, (CAKE, WBNB, "token0")),
        (WBNB, CAKE, (CAKE, WBNB, "token1")),
    ])
    def test_priority(self, token0, token1, expected):
        assert select_base_and_quote(token0, token1, "bsc") == expected

    def test_neither_known_keeps_token0_as_base(self):
        other = "0x000000000000000000000000000000000000dEaD"
        assert select_base_and_quote(CAKE, other, "bsc") == (CAKE, other, "token0")

    def test_case_insensitive(self):
        assert select_base_and_quote(USDT.lower(), WBNB.lower(), "bsc")[2] == "token1"

    def test_unknown_chain(self):
        assert select_base_and_quote(USDT, WBNB, "fantom") == (USDT, WBNB, "token0")


# ── Dates and topics ────────────────────────────────────────────────────

class TestDates:

    def test_block_time_to_date_is_utc(self):
        # 2023-11-14 22:13:20 UTC
        assert block_time_to_date(1_700_000_000) == "14-11-2023"
        assert block_time_to_date(1_700_000_000 + 2 * 3600) == "15-11-2023"

    def test_iso_round_trip(self):
        iso = timestamp_to_iso(1_700_000_000)
        assert iso == "2023-11-14T22:13:20+00:00"
        assert iso_to_timestamp(iso) == 1_700_000_000


class TestTopics:

    def test_address_topic_round_trip(self):
        topic = address_to_topic(WBNB)
        assert len(topic) == 66
        assert topic_to_address(topic) == WBNB

    def test_int_topic(self):
        assert topic_to_int(int_to_topic(123456789)) == 123456789

    @pytest.mark.parametrize("tick", [-887272, -600, -1, 0, 1, 887272])
    def test_signed_ticks(self, tick):
        assert topic_to_int(signed_topic(tick), signed=True) == tick

    def test_bytes_input(self):
        assert topic_to_int(bytes.fromhex("00" * 31 + "2a")) == 42
        assert to_hex_str(bytes.fromhex("ABCD")) == "0xabcd"
        assert to_hex_str("ABCD") == "0xabcd"

    def test_data_words(self):
        words = data_words("0x" + "00" * 31 + "01" + "00" * 31 + "02")
        assert [int.from_bytes(w, "big") for w in words] == [1, 2]
