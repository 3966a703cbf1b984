import logging
from typing import Callable, Optional

from pathbuster.core.filters import FilterStage
from pathbuster.core.models import Job, Match, Response, ResponseSignature, ScanState, Target

logger = logging.getLogger(__name__)


class BaseStage:
    """
    Shared plumbing for the pipeline stages.

    Every request a stage issues goes through ``fetch``, which holds a
    governor permit for exactly the duration of the network call.
    """

    name = "base"
    filter_stage = FilterStage.FINGERPRINT

    def __init__(self, client, governor, config, differ=None, sink=None, progress=None, stop_event=None):
        self.client = client
        self.governor = governor
        self.config = config
        self.differ = differ
        self.sink = sink
        self.progress = progress
        self.stop_event = stop_event
        self.method = config.method_list[0]
        self.headers = tuple(config.request_headers.items())
        self.filters = config.filters_for(self.filter_stage)

    @property
    def stopping(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def make_job(self, target: Target, url: str, depth: int = 0, word: str = "", method: str = None) -> Job:
        return Job(
            target=target,
            method=method or self.method,
            url=url,
            headers=self.headers,
            stage=self.name,
            depth=depth,
            word=word,
        )

    async def fetch(self, job: Job, cancelled: Callable[[], bool] = None) -> Optional[Response]:
        """
        Send ``job`` while holding a governor permit.

        ``cancelled`` is checked once the permit is granted, right before the
        request goes out; when it returns True nothing is sent and None is
        returned.
        """
        async with self.governor.slot():
            if cancelled is not None and cancelled():
                return None
            response = await self.client.send(job.method, job.url, job.header_dict(), self.config.timeout)
        if response.ok:
            self.governor.record_response(response.status)
        else:
            logger.debug("[%s] %s %s: %s", self.name, job.method, job.url, response.error)
        if self.progress:
            self.progress.complete()
        return response

    def plan(self, state: ScanState, count: int):
        state.jobs_total += count
        if self.progress:
            self.progress.add_jobs(count)

    def unplan(self, state: ScanState, count: int):
        if count <= 0:
            return
        state.jobs_total -= count
        if self.progress:
            self.progress.discard(count)

    def excluded(self, response: Response, signature: ResponseSignature) -> bool:
        return self.filters.excludes(signature, response.body)

    def diff_score(self, target: Target, response: Response) -> Optional[float]:
        if self.differ is None:
            return None
        return self.differ.score(target.url, response)

    async def emit(self, match: Match):
        if self.sink is not None:
            await self.sink.add(match)
