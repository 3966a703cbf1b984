import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from pathbuster.core.filters import FilterStage
from pathbuster.core.models import NO_RESPONSE, Job, Match, Response, ResponseSignature, ScanState, Target, traversal_url
from pathbuster.core.utils import random_string
from pathbuster.modules.base import BaseStage
from pathbuster.modules.noise import SEED_WORDS, NoiseFilter

logger = logging.getLogger(__name__)

DROP_THRESHOLD = 5


def build_brute_url(target: Target, payload: str, depth: int, word: str) -> str:
    base = traversal_url(target, payload, depth)
    word = word.strip()
    if not word:
        return base
    if base.endswith("/") or base.lower().endswith("%2f"):
        return base + word.lstrip("/")
    if word.startswith("/"):
        return base + word
    return base + "/" + word


class DropAfterFail:
    """
    Per-target breaker counting consecutive responses with the same status.

    A response resets the counters of every other status. Only statuses in
    ``statuses`` count up; the breaker trips once one of them is seen
    ``threshold`` times in a row. Transport failures (status 0) are ignored
    entirely unless 0 is one of ``statuses``.
    """

    def __init__(self, statuses, threshold: int = DROP_THRESHOLD, counters: Dict[int, int] = None):
        self.statuses = frozenset(statuses)
        self.threshold = threshold
        self.counters = counters if counters is not None else {}

    def record(self, status: int) -> bool:
        if status == NO_RESPONSE and NO_RESPONSE not in self.statuses:
            return False
        for other in self.counters:
            if other != status:
                self.counters[other] = 0
        if status not in self.statuses:
            return False
        self.counters[status] = self.counters.get(status, 0) + 1
        return self.counters[status] >= self.threshold


@dataclass
class BruteResult:
    requests: int = 0
    matches: int = 0
    filtered: int = 0
    noise: int = 0
    discarded: int = 0
    dropped: bool = False


class BruteforceStage(BaseStage):
    name = "brute"
    filter_stage = FilterStage.VALIDATE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.methods = self.config.method_list
        self.workers = self.config.workers
        self.wordlist_codes = self.config.wordlist_codes
        self.drop_codes = self.config.drop_codes
        self.show_all = not self.config.disable_show_all

    def build_jobs(self, target: Target, payload: str, depth: int, words: Iterable[str]) -> List[Job]:
        jobs = []
        for word in words:
            url = build_brute_url(target, payload, depth, word)
            for method in self.methods:
                jobs.append(self.make_job(target, url, depth=depth, word=word, method=method))
        return jobs

    async def seed_noise(self, target: Target, payload: str, depth: int, state: ScanState, noise: NoiseFilter):
        self.plan(state, SEED_WORDS)
        for _ in range(SEED_WORDS):
            word = f"pathbuster-ac-{random_string(12)}"
            response = await self.fetch(self.make_job(target, build_brute_url(target, payload, depth, word), depth=depth, word=word))
            state.jobs_done += 1
            if response.ok:
                noise.seed(ResponseSignature.from_response(response))
        logger.debug("%s: noise filter seeded with %d signatures", target, len(noise.seeds))

    async def run(self, target: Target, payload: str, depth: int, state: ScanState, words: List[str]) -> BruteResult:
        result = BruteResult()
        jobs = self.build_jobs(target, payload, depth, words)
        if not jobs:
            return result

        noise = None
        if self.config.auto_collab:
            noise = NoiseFilter(self.config.signature_deviation, self.config.noise_min_repeats)
            await self.seed_noise(target, payload, depth, state, noise)

        self.plan(state, len(jobs))
        breaker = DropAfterFail(self.drop_codes, counters=state.consecutive_same_status)
        pending = asyncio.Queue()
        for job in jobs:
            pending.put_nowait(job)
        results = asyncio.Queue()
        halt = asyncio.Event()

        workers = [
            asyncio.create_task(self._worker(state, pending, results, halt))
            for _ in range(min(self.workers, len(jobs)))
        ]
        try:
            finished = 0
            while finished < len(workers):
                item = await results.get()
                if item is None:
                    finished += 1
                    continue
                job, response, ack = item
                try:
                    if response is None:
                        # taken by a worker but never sent
                        result.discarded += 1
                        self.unplan(state, 1)
                        continue
                    tripped = await self._handle(target, payload, state, job, response, breaker, noise, result)
                    if tripped:
                        halt.set()
                        leftover = self._discard(pending)
                        result.discarded += leftover
                        self.unplan(state, leftover)
                finally:
                    if not ack.done():
                        ack.set_result(None)
            if self.stopping and not pending.empty():
                leftover = self._discard(pending)
                result.discarded += leftover
                self.unplan(state, leftover)
        finally:
            halt.set()
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            outcomes = await asyncio.gather(*workers, return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, Exception):
                raise outcome

        if noise is not None:
            logger.debug("%s: noise filter %s", target, noise.stats())
        return result

    async def _worker(self, state: ScanState, pending: asyncio.Queue, results: asyncio.Queue, halt: asyncio.Event):
        loop = asyncio.get_running_loop()

        def cancelled():
            return halt.is_set() or state.dropped or self.stopping

        try:
            while not cancelled():
                try:
                    job = pending.get_nowait()
                except asyncio.QueueEmpty:
                    break
                response = await self.fetch(job, cancelled=cancelled)
                ack = loop.create_future()
                results.put_nowait((job, response, ack))
                await ack
        finally:
            results.put_nowait(None)

    def _discard(self, pending: asyncio.Queue) -> int:
        count = 0
        while True:
            try:
                pending.get_nowait()
            except asyncio.QueueEmpty:
                return count
            count += 1

    async def _handle(self, target: Target, payload: str, state: ScanState, job: Job, response: Response,
                      breaker: DropAfterFail, noise: Optional[NoiseFilter], result: BruteResult) -> bool:
        state.jobs_done += 1
        result.requests += 1
        if state.dropped:
            return False

        if breaker.record(response.status):
            state.drop()
            result.dropped = True
            logger.warning(
                "%s: dropped after %d consecutive %d responses",
                target, breaker.threshold, response.status,
            )
            return True

        if not response.ok:
            return False

        signature = ResponseSignature.from_response(response)
        if self.excluded(response, signature):
            result.filtered += 1
            return False
        if noise is not None and noise.check(signature):
            result.noise += 1
            return False

        matched = not self.wordlist_codes or signature.status in self.wordlist_codes
        if not matched and not self.show_all:
            return False
        if matched:
            result.matches += 1
        await self.emit(Match(
            target=target.url,
            stage=self.name,
            url=job.url,
            status=signature.status,
            signature=signature,
            diff_score=self.diff_score(target, response),
            method=job.method,
            depth=job.depth,
            payload=payload,
            matched=matched,
        ))
        return False
