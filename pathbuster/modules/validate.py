import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pathbuster.core.differ import within_threshold
from pathbuster.core.filters import FilterStage
from pathbuster.core.models import (
    Match,
    Response,
    ResponseSignature,
    ScanState,
    Stage,
    Target,
    TraversalStrategy,
    traversal_url,
)
from pathbuster.modules.base import BaseStage

logger = logging.getLogger(__name__)


def validation_depths(depth: int, start_depth: int, strategy: TraversalStrategy) -> List[int]:
    """Depths re-probed to confirm ``depth``, deepest first."""
    if strategy is TraversalStrategy.QUICK:
        return [depth, depth - 1] if depth > start_depth else [depth]
    return list(range(depth, start_depth - 1, -1))


@dataclass
class ValidationResult:
    confirmed: bool
    depth: int
    reason: str = ""
    statuses: Dict[int, int] = field(default_factory=dict)
    diff_score: Optional[float] = None
    response: Optional[Response] = None


class ValidationStage(BaseStage):
    name = "validation"
    filter_stage = FilterStage.VALIDATE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.strategy = self.config.strategy
        self.codes = self.config.validate_codes
        self.threshold = self.config.diff_threshold

    def matches(self, response: Response, signature: ResponseSignature) -> bool:
        return response.ok and signature.status in self.codes and not self.excluded(response, signature)

    async def validate(self, target: Target, payload: str, depth: int, state: ScanState, canary: str) -> ValidationResult:
        """
        Re-probe the window below ``depth`` with a canary path appended.

        The candidate holds only when ``depth`` satisfies the validate
        matcher and no shallower depth does. A window that matches
        everywhere means the origin answers the same regardless of
        traversal and is reported as inconclusive.
        """
        depths = validation_depths(depth, self.config.start_depth, self.strategy)
        result = ValidationResult(confirmed=False, depth=depth)
        self.plan(state, len(depths))

        for i, d in enumerate(depths):
            if self.stopping:
                self.unplan(state, len(depths) - i)
                result.reason = "stopped"
                return self._finish(target, state, result)

            url = traversal_url(target, payload, d, suffix=canary)
            response = await self.fetch(self.make_job(target, url, depth=d))
            state.jobs_done += 1
            result.statuses[d] = response.status
            signature = ResponseSignature.from_response(response)
            matched = self.matches(response, signature)

            if d == depth:
                if not response.ok:
                    result.reason = f"request failed: {response.error}"
                elif not matched:
                    result.reason = f"status {response.status} at depth {d} does not match"
                if not matched:
                    self.unplan(state, len(depths) - i - 1)
                    return self._finish(target, state, result)
                result.response = response
            elif matched:
                self.unplan(state, len(depths) - i - 1)
                result.reason = f"inconclusive, depth {d} also returned {response.status}"
                return self._finish(target, state, result)

        if self.differ is not None:
            result.diff_score = self.differ.score(target.url, result.response)
        if result.diff_score is not None and not within_threshold(result.diff_score, self.threshold):
            result.reason = f"diff score {result.diff_score:.1f} outside {self.threshold[0]:g}-{self.threshold[1]:g}"
            return self._finish(target, state, result)

        result.confirmed = True
        state.confirmed_depth = depth
        signature = ResponseSignature.from_response(result.response)
        await self.emit(Match(
            target=target.url,
            stage=self.name,
            url=result.response.url,
            status=signature.status,
            signature=signature,
            diff_score=result.diff_score,
            method=self.method,
            depth=depth,
            payload=payload,
        ))
        return self._finish(target, state, result)

    def _finish(self, target, state, result):
        if result.confirmed:
            logger.info("%s: depth %d confirmed", target, result.depth)
            state.advance(Stage.BRUTE)
        else:
            logger.info("%s: depth %d not confirmed (%s)", target, result.depth, result.reason)
        return result
