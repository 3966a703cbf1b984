import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pathbuster.core.filters import FilterStage
from pathbuster.core.models import (
    Match,
    Response,
    ResponseSignature,
    ScanState,
    Target,
    TraversalStrategy,
    traversal_url,
)
from pathbuster.modules.base import BaseStage

logger = logging.getLogger(__name__)


@dataclass
class FingerprintResult:
    depth: Optional[int] = None
    signature: Optional[ResponseSignature] = None
    url: Optional[str] = None
    response: Optional[Response] = None
    probed: List[int] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.depth is not None


def quick_depth(target: Target, start_depth: int, max_depth: int) -> int:
    candidate = start_depth + len(target.segments)
    return max(start_depth, min(max_depth, candidate))


def candidate_depths(target: Target, strategy: TraversalStrategy, start_depth: int, max_depth: int) -> List[int]:
    if strategy is TraversalStrategy.QUICK:
        return [quick_depth(target, start_depth, max_depth)]
    return list(range(start_depth, max_depth + 1))


class FingerprintStage(BaseStage):
    name = "fingerprint"
    filter_stage = FilterStage.FINGERPRINT

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.strategy = self.config.strategy
        self.codes = self.config.fingerprint_codes

    def accepts(self, response: Response, signature: ResponseSignature) -> bool:
        return signature.status in self.codes and not self.excluded(response, signature)

    async def find_depth(self, target: Target, payload: str, state: ScanState) -> FingerprintResult:
        depths = candidate_depths(target, self.strategy, self.config.start_depth, self.config.max_depth)
        result = FingerprintResult()
        self.plan(state, len(depths))

        # greedy probes must stay strictly ordered, each outcome can end the search
        for i, depth in enumerate(depths):
            if self.stopping:
                self.unplan(state, len(depths) - i)
                return result
            url = traversal_url(target, payload, depth)
            response = await self.fetch(self.make_job(target, url, depth=depth))
            state.jobs_done += 1
            result.probed.append(depth)
            if not response.ok:
                continue

            signature = ResponseSignature.from_response(response)
            if not self.accepts(response, signature):
                continue

            self.unplan(state, len(depths) - i - 1)
            result.depth = depth
            result.signature = signature
            result.url = url
            result.response = response
            state.payload = payload
            state.fingerprint_depth = depth
            state.fingerprint_signature = signature
            logger.info("%s: fingerprint depth %d with %r (status %d)", target, depth, payload, signature.status)
            await self.emit(Match(
                target=target.url,
                stage=self.name,
                url=url,
                status=signature.status,
                signature=signature,
                diff_score=self.diff_score(target, response),
                method=self.method,
                depth=depth,
                payload=payload,
            ))
            return result

        logger.debug("%s: no fingerprint depth with %r (probed %s)", target, payload, result.probed)
        return result
