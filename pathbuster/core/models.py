import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from pathbuster.core.errors import ConfigError

NO_RESPONSE = 0


class Stage(Enum):
    FINGERPRINTING = "fingerprinting"
    VALIDATING = "validating"
    BRUTE = "brute"
    DONE = "done"
    DROPPED = "dropped"


class TraversalStrategy(Enum):
    GREEDY = "greedy"
    QUICK = "quick"


_STAGE_ORDER = {
    Stage.FINGERPRINTING: 0,
    Stage.VALIDATING: 1,
    Stage.BRUTE: 2,
    Stage.DONE: 3,
    Stage.DROPPED: 3,
}


@dataclass(frozen=True)
class Target:
    url: str
    segments: Tuple[str, ...]
    raw_request: Optional[str] = None
    # payloads are appended directly to the url when False
    pad_slash: bool = True

    @classmethod
    def parse(cls, url: str, ignore_trailing_slash: bool = False, raw_request: str = None) -> "Target":
        url = url.strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigError(f"invalid URL: {url}")
        if ignore_trailing_slash and parsed.path not in ("", "/"):
            url = url.rstrip("/")
        segments = tuple(s for s in parsed.path.split("/") if s)
        return cls(url=url, segments=segments, raw_request=raw_request, pad_slash=not ignore_trailing_slash)

    @property
    def base(self) -> str:
        parsed = urlparse(self.url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def root_url(self) -> str:
        return f"{self.base}/"

    def __str__(self):
        return self.url


def traversal_url(target: Target, payload: str, depth: int, suffix: str = "", pad_slash: bool = None) -> str:
    if pad_slash is None:
        pad_slash = target.pad_slash
    out = target.url.split("?", 1)[0].split("#", 1)[0]
    if pad_slash and not out.endswith("/"):
        out += "/"
    return out + payload * depth + suffix


def depth_of(target: Target, url: str, payload: str) -> Optional[int]:
    prefix = traversal_url(target, payload, 0)
    if not payload or not url.startswith(prefix):
        return None
    rest = url[len(prefix):]
    depth = 0
    while rest.startswith(payload):
        rest = rest[len(payload):]
        depth += 1
    return depth


@dataclass(frozen=True)
class Job:
    target: Target
    method: str
    url: str
    headers: Tuple[Tuple[str, str], ...] = ()
    stage: str = "fingerprint"
    depth: int = 0
    word: str = ""

    def header_dict(self) -> Dict[str, str]:
        return dict(self.headers)


@dataclass
class Response:
    url: str
    status: int = NO_RESPONSE
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    size: int = 0
    elapsed: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status != NO_RESPONSE

    @classmethod
    def failed(cls, url: str, error: str, elapsed: float = 0.0) -> "Response":
        return cls(url=url, error=error, elapsed=elapsed)


@dataclass(frozen=True)
class ResponseSignature:
    status: int
    size: int
    words: int
    lines: int
    body_digest: Optional[str] = None

    @classmethod
    def from_response(cls, response: Response, digest: bool = False) -> "ResponseSignature":
        body = response.body or ""
        return cls(
            status=response.status,
            size=response.size if response.size else len(body.encode("utf-8", errors="ignore")),
            words=len(body.split()),
            lines=len(body.splitlines()),
            body_digest=hashlib.sha1(body.encode("utf-8", errors="ignore")).hexdigest() if digest else None,
        )

    @property
    def key(self) -> Tuple[int, int, int, int]:
        return (self.status, self.size, self.words, self.lines)

    def same_as(self, other: "ResponseSignature", deviation: int = 0) -> bool:
        if self.status != other.status:
            return False
        return (
            abs(self.size - other.size) <= deviation
            and abs(self.words - other.words) <= deviation
            and abs(self.lines - other.lines) <= deviation
        )


@dataclass
class ScanState:
    target: Target
    stage: Stage = Stage.FINGERPRINTING
    payload: Optional[str] = None
    fingerprint_depth: Optional[int] = None
    fingerprint_signature: Optional[ResponseSignature] = None
    confirmed_depth: Optional[int] = None
    consecutive_same_status: Dict[int, int] = field(default_factory=dict)
    dropped: bool = False
    jobs_total: int = 0
    jobs_done: int = 0
    error: Optional[str] = None

    def advance(self, stage: Stage):
        if self.stage in (Stage.DONE, Stage.DROPPED):
            return False
        if _STAGE_ORDER[stage] < _STAGE_ORDER[self.stage]:
            raise ValueError(f"cannot move {self.target} from {self.stage.value} back to {stage.value}")
        self.stage = stage
        return True

    def drop(self):
        self.dropped = True
        self.stage = Stage.DROPPED

    @property
    def finished(self) -> bool:
        return self.dropped or self.stage in (Stage.DONE, Stage.DROPPED)


@dataclass(frozen=True)
class Match:
    target: str
    stage: str
    url: str
    status: int
    signature: ResponseSignature
    diff_score: Optional[float] = None
    method: str = "GET"
    depth: Optional[int] = None
    payload: Optional[str] = None
    matched: bool = True

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "stage": self.stage,
            "url": self.url,
            "status": self.status,
            "size": self.signature.size,
            "words": self.signature.words,
            "lines": self.signature.lines,
            "diff_score": self.diff_score,
            "method": self.method,
            "depth": self.depth,
            "payload": self.payload,
            "matched": self.matched,
        }
