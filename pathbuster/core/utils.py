import asyncio
import random
import string
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from pathbuster.core.errors import ConfigError


class TokenBucketLimiter:
    def __init__(self, rate=1000, burst=None, name="default"):
        if rate <= 0:
            raise ConfigError(f"rate must be positive, got {rate}")
        self.rate = rate
        self.burst = burst if burst else rate
        self.name = name
        self.tokens = float(self.burst)
        self.last_update = time.monotonic()
        self._lock = None
        self.total_requests = 0
        self.total_waits = 0
        self.total_wait_time = 0.0
        self._backoff_factor = 1.0
        self._success_streak = 0

    @property
    def lock(self):
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _refill(self):
        now = time.monotonic()
        elapsed = now - self.last_update
        self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
        self.last_update = now

    async def acquire(self, tokens=1):
        # waiters queue on the lock, so tokens are handed out in arrival order
        async with self.lock:
            self._refill()
            self.total_requests += 1

            adjusted_tokens = tokens * self._backoff_factor

            if self.tokens >= adjusted_tokens:
                self.tokens -= adjusted_tokens
                return 0.0

            wait_time = (adjusted_tokens - self.tokens) / self.rate
            self.total_waits += 1
            self.total_wait_time += wait_time

            await asyncio.sleep(wait_time)
            self._refill()
            self.tokens -= adjusted_tokens
            return wait_time

    def record_response(self, status_code):
        if status_code == 429:
            self._backoff_factor = min(self._backoff_factor * 1.5, 10.0)
            self._success_streak = 0
        elif 200 <= status_code < 400:
            self._success_streak += 1
            if self._success_streak >= 10:
                self._backoff_factor = max(self._backoff_factor * 0.9, 1.0)
                self._success_streak = 0

    def stats(self):
        return {
            "name": self.name,
            "rate": self.rate,
            "burst": self.burst,
            "current_tokens": self.tokens,
            "backoff_factor": self._backoff_factor,
            "total_requests": self.total_requests,
            "total_waits": self.total_waits,
            "total_wait_time": self.total_wait_time,
            "avg_wait_time": self.total_wait_time / max(self.total_waits, 1),
        }


class ConcurrencyLimiter:
    def __init__(self, limit=1000):
        if limit <= 0:
            raise ConfigError(f"concurrency must be positive, got {limit}")
        self.limit = limit
        self._semaphore = None
        self.in_flight = 0
        self.peak = 0

    @property
    def semaphore(self):
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.limit)
        return self._semaphore

    async def acquire(self):
        await self.semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)

    def release(self):
        self.in_flight -= 1
        self.semaphore.release()

    def stats(self):
        return {"limit": self.limit, "in_flight": self.in_flight, "peak": self.peak}


@dataclass
class Permit:
    id: int
    waited: float = 0.0
    released: bool = False


class Governor:
    """Global gate every request passes through: a concurrency slot plus a rate token."""

    def __init__(self, rate=1000, concurrency=1000, burst=None):
        self.rate_limiter = TokenBucketLimiter(rate=rate, burst=burst, name="requests")
        self.concurrency = ConcurrencyLimiter(concurrency)
        self.issued = 0

    async def acquire(self) -> Permit:
        await self.concurrency.acquire()
        try:
            waited = await self.rate_limiter.acquire()
        except BaseException:
            self.concurrency.release()
            raise
        self.issued += 1
        return Permit(id=self.issued, waited=waited)

    def release(self, permit: Permit):
        if permit.released:
            return
        permit.released = True
        self.concurrency.release()

    @asynccontextmanager
    async def slot(self):
        permit = await self.acquire()
        try:
            yield permit
        finally:
            self.release(permit)

    def record_response(self, status_code):
        self.rate_limiter.record_response(status_code)

    def stats(self):
        return {
            "issued": self.issued,
            "rate_limiter": self.rate_limiter.stats(),
            "concurrency": self.concurrency.stats(),
        }


class ScanProgress:
    def __init__(self):
        self.start_time = time.monotonic()
        self.total = 0
        self.done = 0
        self.targets_total = 0
        self.targets_done = 0

    def add_jobs(self, count):
        self.total += count

    def complete(self, count=1):
        self.done += count

    def discard(self, count):
        # jobs that will never run (dropped target) leave the total
        self.total = max(self.done, self.total - count)

    def target_finished(self):
        self.targets_done += 1

    def get_elapsed(self):
        return time.monotonic() - self.start_time

    @property
    def percent(self):
        if not self.total:
            return 0.0
        return min(100.0, self.done * 100.0 / self.total)

    def eta(self):
        if not self.done or self.done >= self.total:
            return None
        rate = self.done / max(self.get_elapsed(), 1e-6)
        return (self.total - self.done) / rate

    def stats(self):
        eta = self.eta()
        return {
            "jobs_total": self.total,
            "jobs_done": self.done,
            "targets_total": self.targets_total,
            "targets_done": self.targets_done,
            "percent": self.percent,
            "elapsed_formatted": self._format_time(self.get_elapsed()),
            "eta_formatted": self._format_time(eta) if eta is not None else "-",
        }

    def _format_time(self, seconds):
        m, s = divmod(int(seconds), 60)
        h, m = divmod(m, 60)
        if h:
            return f"{h}h {m}m {s}s"
        elif m:
            return f"{m}m {s}s"
        return f"{s}s"


def sift3(s1: str, s2: str, max_offset: int = 5) -> float:
    if not s1:
        return float(len(s2))
    if not s2:
        return float(len(s1))
    c = 0
    offset1 = 0
    offset2 = 0
    lcs = 0
    while c + offset1 < len(s1) and c + offset2 < len(s2):
        if s1[c + offset1] == s2[c + offset2]:
            lcs += 1
        else:
            offset1 = 0
            offset2 = 0
            for i in range(max_offset):
                if c + i < len(s1) and s1[c + i] == s2[c]:
                    offset1 = i
                    break
                if c + i < len(s2) and s1[c] == s2[c + i]:
                    offset2 = i
                    break
        c += 1
    return (len(s1) + len(s2)) / 2.0 - lcs


def random_string(length=8):
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=length))


def parse_status_set(value, field="status"):
    if value is None:
        return frozenset()
    if isinstance(value, int):
        return frozenset([value])
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    out = set()
    for item in items:
        item = item.strip()
        if not item:
            continue
        try:
            code = int(item)
        except ValueError:
            raise ConfigError(f"invalid {field} value '{item}', expected a comma separated list of integers")
        if code < 0 or code > 65535:
            raise ConfigError(f"invalid {field} value '{item}'")
        out.add(code)
    return frozenset(out)


def parse_threshold_range(value):
    raw = str(value).strip()
    start, sep, end = raw.partition("-")
    if not sep or not start.strip() or not end.strip():
        raise ConfigError(f"invalid response diff threshold '{raw}', expected MIN-MAX")
    try:
        low, high = float(start), float(end)
    except ValueError:
        raise ConfigError(f"invalid response diff threshold '{raw}', expected MIN-MAX")
    if low < 0 or high < low:
        raise ConfigError(f"invalid response diff threshold '{raw}', expected 0 <= MIN <= MAX")
    return (low, high)


async def load_lines(path, kind="file"):
    path = Path(path).expanduser()
    try:
        async with aiofiles.open(path, "r", encoding="utf-8", errors="ignore") as f:
            content = await f.read()
    except OSError as e:
        raise ConfigError(f"failed to read {kind} '{path}': {e}") from e
    return [line.strip() for line in content.splitlines() if line.strip() and not line.strip().startswith("#")]
