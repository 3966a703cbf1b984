from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from pathbuster.core.models import Response, ResponseSignature
from pathbuster.core.utils import sift3

BODY_SAMPLE = 32768


@dataclass
class DiffResult:
    score: Optional[float]
    status_changed: bool
    size_delta: int
    words_delta: int
    lines_delta: int
    within_threshold: bool

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "status_changed": self.status_changed,
            "size_delta": self.size_delta,
            "words_delta": self.words_delta,
            "lines_delta": self.lines_delta,
            "within_threshold": self.within_threshold,
        }


def diff_score(body1: str, body2: str, max_offset: int = 5) -> float:
    return sift3(body1[:BODY_SAMPLE], body2[:BODY_SAMPLE], max_offset)


def within_threshold(score: float, threshold: Tuple[float, float]) -> bool:
    low, high = threshold
    return low <= score <= high


def signature_delta(a: ResponseSignature, b: ResponseSignature) -> Tuple[int, int, int]:
    return (abs(a.size - b.size), abs(a.words - b.words), abs(a.lines - b.lines))


class ResponseDiffer:
    """
    Holds the non-traversed baseline response of each target and scores
    traversed responses against it.

    A baseline that failed at the transport level or came back with an empty
    body cannot be scored against, in which case every comparison passes the
    threshold gate and carries no score.
    """

    def __init__(self, threshold: Tuple[float, float] = (5.0, 1000.0)):
        self.threshold = threshold
        self.baselines: Dict[str, Response] = {}

    def set_baseline(self, key: str, response: Response):
        self.baselines[key] = response

    def baseline(self, key: str) -> Optional[Response]:
        return self.baselines.get(key)

    def has_usable_baseline(self, key: str) -> bool:
        base = self.baselines.get(key)
        return base is not None and base.ok and bool(base.body)

    def score(self, key: str, response: Response) -> Optional[float]:
        if not self.has_usable_baseline(key):
            return None
        return diff_score(response.body or "", self.baselines[key].body)

    def compare(self, key: str, response: Response) -> DiffResult:
        base = self.baselines.get(key)
        sig = ResponseSignature.from_response(response)
        if base is None or not base.ok:
            return DiffResult(
                score=None, status_changed=False, size_delta=0, words_delta=0,
                lines_delta=0, within_threshold=True,
            )

        base_sig = ResponseSignature.from_response(base)
        size_delta, words_delta, lines_delta = signature_delta(sig, base_sig)
        score = self.score(key, response)
        return DiffResult(
            score=score,
            status_changed=sig.status != base_sig.status,
            size_delta=size_delta,
            words_delta=words_delta,
            lines_delta=lines_delta,
            within_threshold=score is None or within_threshold(score, self.threshold),
        )

    def forget(self, key: str):
        self.baselines.pop(key, None)
