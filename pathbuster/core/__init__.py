from pathbuster.core.errors import PathbusterError, ConfigError
from pathbuster.core.models import (
    NO_RESPONSE, Stage, TraversalStrategy, Target, Job, Response, ResponseSignature,
    ScanState, Match, traversal_url, depth_of
)
from pathbuster.core.utils import (
    TokenBucketLimiter, ConcurrencyLimiter, Governor, Permit, ScanProgress,
    sift3, random_string, parse_status_set, parse_threshold_range, load_lines
)
from pathbuster.core.differ import ResponseDiffer, DiffResult, diff_score, within_threshold
from pathbuster.core.filters import (
    FilterSet, FilterStage, build_filters, split_stage_prefixed_csv,
    split_stage_prefixed_regex, combine_regexes
)
from pathbuster.core.config import ScanConfig, load_config
from pathbuster.core.http import HttpClient

__all__ = [
    "PathbusterError",
    "ConfigError",
    "NO_RESPONSE",
    "Stage",
    "TraversalStrategy",
    "Target",
    "Job",
    "Response",
    "ResponseSignature",
    "ScanState",
    "Match",
    "traversal_url",
    "depth_of",
    "TokenBucketLimiter",
    "ConcurrencyLimiter",
    "Governor",
    "Permit",
    "ScanProgress",
    "sift3",
    "random_string",
    "parse_status_set",
    "parse_threshold_range",
    "load_lines",
    "ResponseDiffer",
    "DiffResult",
    "diff_score",
    "within_threshold",
    "FilterSet",
    "FilterStage",
    "build_filters",
    "split_stage_prefixed_csv",
    "split_stage_prefixed_regex",
    "combine_regexes",
    "ScanConfig",
    "load_config",
    "HttpClient",
]
