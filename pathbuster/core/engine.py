import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from pathbuster.core.config import ScanConfig
from pathbuster.core.differ import ResponseDiffer
from pathbuster.core.errors import ConfigError
from pathbuster.core.http import HttpClient
from pathbuster.core.models import Match, ScanState, Stage, Target, traversal_url
from pathbuster.core.utils import Governor, ScanProgress, load_lines, random_string
from pathbuster.modules.bruteforce import BruteforceStage
from pathbuster.modules.fingerprint import FingerprintStage
from pathbuster.modules.validate import ValidationStage

logger = logging.getLogger(__name__)


class MatchSink:
    """Append-only match collection shared by every target pipeline."""

    def __init__(self, on_match: Callable = None):
        self.matches: List[Match] = []
        self.on_match = on_match
        self._lock = None

    @property
    def lock(self):
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def add(self, match: Match):
        async with self.lock:
            self.matches.append(match)
        if self.on_match is not None:
            ret = self.on_match(match)
            if inspect.isawaitable(ret):
                await ret

    def __len__(self):
        return len(self.matches)

    def __iter__(self):
        return iter(list(self.matches))

    def to_list(self) -> List[dict]:
        return [m.to_dict() for m in self.matches]


@dataclass
class ScanResult:
    matches: List[Match]
    states: Dict[str, ScanState]
    elapsed: float
    stopped: bool = False
    stats: dict = field(default_factory=dict)

    def by_stage(self, stage: str) -> List[Match]:
        return [m for m in self.matches if m.stage == stage]

    def summary(self) -> dict:
        states = list(self.states.values())
        return {
            "targets": len(states),
            "confirmed": sum(1 for s in states if s.confirmed_depth is not None),
            "dropped": sum(1 for s in states if s.dropped),
            "errors": sum(1 for s in states if s.error),
            "matches": len(self.matches),
            "hits": sum(1 for m in self.matches if m.stage == "brute" and m.matched),
            "elapsed": self.elapsed,
            "stopped": self.stopped,
        }


def create_governor(config: ScanConfig) -> Governor:
    return Governor(rate=config.rate, concurrency=config.concurrency, burst=config.burst)


class Scanner:
    def __init__(self, targets: Sequence, payloads: Sequence[str], config: ScanConfig,
                 client=None, wordlist: Sequence[str] = None, on_match: Callable = None):
        self.config = config.validate()
        self.targets = [
            t if isinstance(t, Target) else Target.parse(t, config.ignore_trailing_slash)
            for t in targets
        ]
        self.payloads = [p for p in payloads if p]
        self.wordlist = list(wordlist or [])
        if config.path:
            self.wordlist = [config.path]
        self.client = client

        if not self.targets:
            raise ConfigError("no targets to scan")
        if not self.payloads:
            raise ConfigError("no traversal payloads loaded")
        if not config.skip_brute and not self.wordlist:
            raise ConfigError("a wordlist is required unless skip_brute is set")

        self.governor = create_governor(config)
        self.progress = ScanProgress()
        self.progress.targets_total = len(self.targets)
        self.sink = MatchSink(on_match)
        self.differ = ResponseDiffer(config.diff_threshold)
        self.states: Dict[str, ScanState] = {}
        self.stop_event = asyncio.Event()
        self.start_time = None

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self):
        """No new jobs are issued after this; requests in flight finish and release their permits."""
        if not self.stopped:
            logger.warning("stopping scan, waiting for in-flight requests")
        self.stop_event.set()

    def _build_stages(self, client):
        kwargs = dict(
            differ=self.differ,
            sink=self.sink,
            progress=self.progress,
            stop_event=self.stop_event,
        )
        return (
            FingerprintStage(client, self.governor, self.config, **kwargs),
            ValidationStage(client, self.governor, self.config, **kwargs),
            BruteforceStage(client, self.governor, self.config, **kwargs),
        )

    async def run(self) -> ScanResult:
        self.start_time = time.monotonic()
        if self.client is None:
            async with HttpClient(self.config) as client:
                await self._run(client)
        else:
            await self._run(self.client)

        return ScanResult(
            matches=list(self.sink.matches),
            states=dict(self.states),
            elapsed=time.monotonic() - self.start_time,
            stopped=self.stopped,
            stats=self.get_stats(),
        )

    async def _run(self, client):
        stages = self._build_stages(client)
        batch_size = self.config.brute_queue_concurrency or len(self.targets)
        for i in range(0, len(self.targets), batch_size):
            if self.stopped:
                break
            batch = self.targets[i:i + batch_size]
            logger.debug("starting batch of %d targets", len(batch))
            await asyncio.gather(*(self._scan_target(target, stages) for target in batch))

    async def _scan_target(self, target: Target, stages):
        state = ScanState(target=target)
        self.states[target.url] = state
        try:
            await self._pipeline(target, state, stages)
        except Exception as e:
            logger.exception("%s: scan failed", target)
            state.error = str(e) or e.__class__.__name__
            state.advance(Stage.DONE)
        finally:
            self.differ.forget(target.url)
            self.progress.target_finished()

    async def _pipeline(self, target: Target, state: ScanState, stages):
        fingerprint, validation, brute = stages
        canary = random_string(10)

        # reference response for diff scores, the same canary path without traversal
        fingerprint.plan(state, 1)
        baseline = await fingerprint.fetch(fingerprint.make_job(target, traversal_url(target, "", 0, suffix=canary)))
        state.jobs_done += 1
        self.differ.set_baseline(target.url, baseline)

        payload = None
        depth = None
        for candidate in self.payloads:
            if self.stopped:
                break
            found = await fingerprint.find_depth(target, candidate, state)
            if not found.found:
                continue
            if self.config.skip_validation:
                payload, depth = candidate, found.depth
                state.confirmed_depth = depth
                state.advance(Stage.BRUTE)
                break
            state.advance(Stage.VALIDATING)
            checked = await validation.validate(target, candidate, found.depth, state, canary)
            if checked.confirmed:
                payload, depth = candidate, found.depth
                break

        if depth is None:
            logger.info("%s: no traversal depth found", target)
            state.advance(Stage.DONE)
            return
        if self.config.skip_brute or self.stopped:
            state.advance(Stage.DONE)
            return

        outcome = await brute.run(target, payload, depth, state, self.wordlist)
        logger.info(
            "%s: brute force done, %d requests, %d hits%s",
            target, outcome.requests, outcome.matches, " (dropped)" if outcome.dropped else "",
        )
        state.advance(Stage.DONE)

    def get_results(self) -> List[Match]:
        return list(self.sink.matches)

    def get_stats(self):
        stats = {
            "targets": len(self.targets),
            "matches": len(self.sink),
            "progress": self.progress.stats(),
            "governor": self.governor.stats(),
        }
        if self.client is not None and hasattr(self.client, "get_stats"):
            stats["http"] = self.client.get_stats()
        return stats


async def load_targets(config: ScanConfig) -> List[str]:
    targets = list(config.urls or [])
    if config.input_file:
        targets.extend(await load_lines(config.input_file, kind="input file"))
    return targets


async def create_scanner(config: ScanConfig, client=None, on_match: Callable = None) -> Scanner:
    if not config.payloads:
        raise ConfigError("a payloads file is required")
    targets = await load_targets(config)
    payloads = await load_lines(config.payloads, kind="payloads file")
    wordlist = []
    if config.wordlist and not config.skip_brute and not config.path:
        wordlist = await load_lines(config.wordlist, kind="wordlist")
    return Scanner(targets, payloads, config, client=client, wordlist=wordlist, on_match=on_match)
