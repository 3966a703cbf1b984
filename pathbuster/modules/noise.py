import logging
from collections import Counter
from typing import List

from pathbuster.core.models import ResponseSignature

logger = logging.getLogger(__name__)

SEED_WORDS = 3


class NoiseFilter:
    """
    Learns what a target's "nothing here" response looks like while it is
    being brute forced.

    Two sources feed it: signatures of requests for words that cannot exist
    (seeded before the run) and a running tally of every signature seen.
    A signature is noise when it resembles a seed, or when it has been seen
    at least ``min_repeats`` times and makes up more than half of all
    observations. Real hits that happen to look like the learned negative
    are suppressed too.

    One instance belongs to one target pipeline and is never shared.
    """

    def __init__(self, deviation: int = 0, min_repeats: int = 3):
        self.deviation = deviation
        self.min_repeats = min_repeats
        self.seeds: List[ResponseSignature] = []
        self.tally = Counter()
        self.observed = 0
        self.suppressed = 0

    def seed(self, signature: ResponseSignature):
        self.seeds.append(signature)

    def observe(self, signature: ResponseSignature):
        self.tally[signature.key] += 1
        self.observed += 1

    def is_noise(self, signature: ResponseSignature) -> bool:
        for seed in self.seeds:
            if signature.same_as(seed, self.deviation):
                return True
        count = self.tally.get(signature.key, 0)
        return count >= self.min_repeats and count * 2 > self.observed

    def check(self, signature: ResponseSignature) -> bool:
        """Record ``signature`` and return True if it should be suppressed."""
        self.observe(signature)
        noisy = self.is_noise(signature)
        if noisy:
            self.suppressed += 1
        return noisy

    def stats(self):
        common = self.tally.most_common(1)
        return {
            "seeds": len(self.seeds),
            "observed": self.observed,
            "suppressed": self.suppressed,
            "most_common": common[0] if common else None,
        }
