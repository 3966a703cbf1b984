import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from pathbuster.core.errors import ConfigError
from pathbuster.core.filters import FilterStage, build_filters
from pathbuster.core.models import TraversalStrategy
from pathbuster.core.utils import parse_status_set, parse_threshold_range

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.pathbuster/config.yml")

# older config files used these names
ALIASES = {
    "int_status": "validate_status",
    "pub_status": "fingerprint_status",
    "sift3_threshold": "response_diff_threshold",
}

# keys written by other tools into the same config file that have no effect here
IGNORED_KEYS = {
    "output_format", "extensions", "dirsearch_compat", "wordlist_dir",
    "wordlist_manipulation", "tech", "waf_test", "no_color",
    "disable_fingerprinting", "disable_waf_bypass", "bypass_level",
    "bypass_transform",
}


@dataclass
class ScanConfig:
    urls: List[str] = field(default_factory=list)
    input_file: Optional[str] = None
    payloads: Optional[str] = None
    wordlist: Optional[str] = None
    path: Optional[str] = None
    output: Optional[str] = None

    rate: int = 1000
    burst: Optional[int] = None
    concurrency: int = 1000
    workers: int = 10
    timeout: float = 10

    proxy: Optional[str] = None
    header: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    user_agent: Optional[str] = None
    methods: str = "GET"
    follow_redirects: bool = False

    drop_after_fail: str = "302,301"
    validate_status: str = "404"
    fingerprint_status: str = "400,500"
    wordlist_status: str = "200"
    response_diff_threshold: str = "5-1000"

    filter_status: str = ""
    filter_size: str = ""
    filter_words: str = ""
    filter_lines: str = ""
    filter_regex: List[str] = field(default_factory=list)

    start_depth: int = 0
    max_depth: int = 5
    traversal_strategy: str = "greedy"

    ignore_trailing_slash: bool = False
    skip_validation: bool = False
    skip_brute: bool = False
    disable_show_all: bool = False

    auto_collab: bool = False
    signature_deviation: int = 0
    noise_min_repeats: int = 3
    brute_queue_concurrency: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ScanConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (data or {}).items():
            key = key.replace("-", "_")
            key = ALIASES.get(key, key)
            if key in IGNORED_KEYS:
                logger.debug("ignoring config key '%s'", key)
                continue
            if key not in known:
                logger.warning("unknown config key '%s'", key)
                continue
            if value is None:
                continue
            kwargs[key] = value
        if isinstance(kwargs.get("urls"), str):
            kwargs["urls"] = [kwargs["urls"]]
        if isinstance(kwargs.get("filter_regex"), str):
            kwargs["filter_regex"] = [kwargs["filter_regex"]]
        for key in ("drop_after_fail", "validate_status", "fingerprint_status", "wordlist_status",
                    "filter_status", "filter_size", "filter_words", "filter_lines", "methods"):
            if isinstance(kwargs.get(key), (list, tuple)):
                kwargs[key] = ",".join(str(v) for v in kwargs[key])
            elif isinstance(kwargs.get(key), int):
                kwargs[key] = str(kwargs[key])
        return cls(**kwargs)

    def merge(self, overrides: dict) -> "ScanConfig":
        data = asdict(self)
        for key, value in overrides.items():
            if value is not None:
                data[ALIASES.get(key, key)] = value
        return ScanConfig.from_dict(data)

    def to_dict(self) -> dict:
        return asdict(self)

    def validate(self) -> "ScanConfig":
        for name in ("rate", "concurrency", "workers"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be greater than 0")
        if self.timeout <= 0:
            raise ConfigError("timeout must be greater than 0")
        if self.start_depth < 0:
            raise ConfigError("start_depth must be 0 or greater")
        if self.max_depth <= 0:
            raise ConfigError("max_depth must be greater than 0")
        if self.start_depth > self.max_depth:
            raise ConfigError(f"start_depth ({self.start_depth}) must not exceed max_depth ({self.max_depth})")
        if self.brute_queue_concurrency < 0:
            raise ConfigError("brute_queue_concurrency must be 0 or greater")
        if self.signature_deviation < 0:
            raise ConfigError("signature_deviation must be 0 or greater")
        if self.noise_min_repeats < 1:
            raise ConfigError("noise_min_repeats must be at least 1")
        if not self.method_list:
            raise ConfigError("at least one HTTP method is required")
        for view in ("strategy", "drop_codes", "validate_codes", "fingerprint_codes",
                     "wordlist_codes", "diff_threshold", "filter_sets"):
            getattr(self, view)
        return self

    @property
    def strategy(self) -> TraversalStrategy:
        try:
            return TraversalStrategy(str(self.traversal_strategy).lower())
        except ValueError:
            raise ConfigError(f"invalid traversal_strategy '{self.traversal_strategy}', expected greedy or quick")

    @property
    def method_list(self) -> List[str]:
        return [m.strip().upper() for m in str(self.methods).split(",") if m.strip()]

    @property
    def drop_codes(self):
        return parse_status_set(self.drop_after_fail, field="drop_after_fail")

    @property
    def validate_codes(self):
        return parse_status_set(self.validate_status, field="validate_status")

    @property
    def fingerprint_codes(self):
        return parse_status_set(self.fingerprint_status, field="fingerprint_status")

    @property
    def wordlist_codes(self):
        return parse_status_set(self.wordlist_status, field="wordlist_status")

    @property
    def diff_threshold(self):
        return parse_threshold_range(self.response_diff_threshold)

    @property
    def filter_sets(self) -> dict:
        return build_filters(
            status=self.filter_status,
            size=self.filter_size,
            words=self.filter_words,
            lines=self.filter_lines,
            regex=self.filter_regex,
        )

    def filters_for(self, stage: FilterStage):
        return self.filter_sets[stage]

    @property
    def request_headers(self) -> Dict[str, str]:
        headers = {}
        if self.header and ":" in self.header:
            key, value = self.header.split(":", 1)
            headers[key.strip()] = value.strip()
        headers.update(self.headers or {})
        return headers


def load_config(path, allow_missing=False) -> ScanConfig:
    path = Path(path).expanduser()
    if not path.exists():
        if allow_missing:
            return ScanConfig()
        raise ConfigError(f"config file not found '{path}'")
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to parse config '{path}': {e}") from e
    if data is None:
        return ScanConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"config '{path}' must be a mapping")
    return ScanConfig.from_dict(data)


def ensure_default_config(path=DEFAULT_CONFIG_PATH) -> Path:
    path = Path(path).expanduser()
    if path.exists():
        return path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        defaults = ScanConfig().to_dict()
        for key in ("urls", "input_file", "output", "path", "header", "headers", "burst", "user_agent", "proxy"):
            defaults.pop(key, None)
        with open(path, "w") as f:
            f.write("# pathbuster config\n")
            yaml.safe_dump(defaults, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"failed to write config file '{path}': {e}") from e
    return path
