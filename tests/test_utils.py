"""Tests for the request governor, distance scoring and value parsing."""

import asyncio

import pytest

from pathbuster.core.differ import ResponseDiffer, diff_score, within_threshold
from pathbuster.core.errors import ConfigError
from pathbuster.core.models import Response
from pathbuster.core.utils import (
    ConcurrencyLimiter,
    Governor,
    ScanProgress,
    TokenBucketLimiter,
    load_lines,
    parse_status_set,
    parse_threshold_range,
    sift3,
)


class TestTokenBucket:
    @pytest.mark.asyncio
    async def test_burst_is_free(self) -> None:
        limiter = TokenBucketLimiter(rate=10, burst=3)
        waits = [await limiter.acquire() for _ in range(3)]
        assert waits == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_waits_when_empty(self) -> None:
        limiter = TokenBucketLimiter(rate=50, burst=1)
        await limiter.acquire()
        waited = await limiter.acquire()
        assert waited > 0
        assert limiter.stats()["total_waits"] == 1

    def test_backoff_on_429(self) -> None:
        limiter = TokenBucketLimiter(rate=10)
        limiter.record_response(429)
        assert limiter.stats()["backoff_factor"] > 1.0

    def test_rejects_zero_rate(self) -> None:
        with pytest.raises(ConfigError):
            TokenBucketLimiter(rate=0)


class TestGovernor:
    @pytest.mark.asyncio
    async def test_concurrency_bound(self) -> None:
        gov = Governor(rate=100000, concurrency=3)

        async def work():
            async with gov.slot():
                await asyncio.sleep(0.01)

        await asyncio.gather(*(work() for _ in range(12)))
        assert gov.concurrency.peak == 3
        assert gov.concurrency.in_flight == 0
        assert gov.issued == 12

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self) -> None:
        gov = Governor(rate=100000, concurrency=1)
        permit = await gov.acquire()
        gov.release(permit)
        gov.release(permit)
        assert gov.concurrency.in_flight == 0
        again = await asyncio.wait_for(gov.acquire(), timeout=1)
        gov.release(again)

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self) -> None:
        gov = Governor(rate=100000, concurrency=1)
        with pytest.raises(RuntimeError):
            async with gov.slot():
                raise RuntimeError("boom")
        assert gov.concurrency.in_flight == 0

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_token_frees_slot(self) -> None:
        gov = Governor(rate=1, concurrency=2, burst=1)
        first = await gov.acquire()
        waiter = asyncio.create_task(gov.acquire())
        await asyncio.sleep(0.05)
        assert gov.concurrency.in_flight == 2
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert gov.concurrency.in_flight == 1
        gov.release(first)
        assert gov.concurrency.in_flight == 0

    def test_independent_limiters(self) -> None:
        assert ConcurrencyLimiter(5).stats()["limit"] == 5
        with pytest.raises(ConfigError):
            ConcurrencyLimiter(0)


class TestProgress:
    def test_eta(self) -> None:
        progress = ScanProgress()
        assert progress.eta() is None
        progress.add_jobs(10)
        progress.complete(5)
        assert progress.percent == 50.0
        assert progress.eta() is not None
        progress.discard(5)
        assert progress.total == 5
        assert progress.eta() is None


class TestSift3:
    def test_identical(self) -> None:
        assert sift3("hello world", "hello world") == 0

    def test_empty(self) -> None:
        assert sift3("", "abc") == 3
        assert sift3("abcd", "") == 4

    def test_different(self) -> None:
        assert sift3("abc", "xyz") == 3

    def test_small_shift(self) -> None:
        assert sift3("abcdef", "abxcdef") < sift3("abcdef", "uvwxyz")

    def test_body_sample(self) -> None:
        assert diff_score("a" * 40000, "a" * 33000) == 0


class TestDiffer:
    def test_threshold_inclusive(self) -> None:
        assert within_threshold(5, (5, 1000))
        assert within_threshold(1000, (5, 1000))
        assert not within_threshold(4.5, (5, 1000))

    def test_unusable_baseline(self) -> None:
        differ = ResponseDiffer((5, 1000))
        differ.set_baseline("t", Response.failed("u", "timeout"))
        assert differ.score("t", Response(url="u", status=200, body="x")) is None
        assert differ.compare("t", Response(url="u", status=200, body="x")).within_threshold

    def test_compare(self) -> None:
        differ = ResponseDiffer((5, 1000))
        differ.set_baseline("t", Response(url="u", status=200, body="welcome home"))
        result = differ.compare("t", Response(url="u", status=404, body="not found"))
        assert result.status_changed
        assert result.score is not None and result.score >= 5
        assert result.within_threshold


class TestParsing:
    def test_status_set(self) -> None:
        assert parse_status_set("302, 301,,") == frozenset({301, 302})
        assert parse_status_set([404, "500"]) == frozenset({404, 500})
        assert parse_status_set("") == frozenset()

    def test_status_set_invalid(self) -> None:
        with pytest.raises(ConfigError):
            parse_status_set("30x")

    def test_threshold(self) -> None:
        assert parse_threshold_range("5-1000") == (5.0, 1000.0)
        assert parse_threshold_range(" 0 - 0 ") == (0.0, 0.0)

    @pytest.mark.parametrize("value", ["500", "500-", "-500", "500-100", "a-b"])
    def test_threshold_invalid(self, value) -> None:
        with pytest.raises(ConfigError):
            parse_threshold_range(value)


@pytest.mark.asyncio
async def test_load_lines(tmp_path) -> None:
    path = tmp_path / "payloads.txt"
    path.write_text("../\n\n# comment\n..%2f\n  ..;/  \n")
    assert await load_lines(path) == ["../", "..%2f", "..;/"]


@pytest.mark.asyncio
async def test_load_lines_missing(tmp_path) -> None:
    with pytest.raises(ConfigError):
        await load_lines(tmp_path / "nope.txt", kind="wordlist")
