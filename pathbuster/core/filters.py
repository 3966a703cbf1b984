import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Optional, Pattern, Sequence, Tuple

from pathbuster.core.differ import BODY_SAMPLE
from pathbuster.core.errors import ConfigError
from pathbuster.core.models import ResponseSignature
from pathbuster.core.utils import parse_status_set

TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


class FilterStage(Enum):
    VALIDATE = "validate"
    FINGERPRINT = "fingerprint"


def _strip_stage_prefix(item: str) -> Tuple[Optional[str], str]:
    head = item[:2].upper()
    if head == "V:":
        return "V", item[2:].strip()
    if head == "F:":
        return "F", item[2:].strip()
    return None, item


def split_stage_prefixed_csv(value: str) -> Tuple[str, str]:
    """
    Split a stage prefixed list such as ``V:301,302,F:404`` into its
    validate and fingerprint halves.

    Items before the first prefix apply to both stages; a prefix applies
    to every following item until the next prefix.
    """
    v, f = [], []
    stage = None
    for raw in (value or "").split(","):
        item = raw.strip()
        if not item:
            continue
        prefix, rest = _strip_stage_prefix(item)
        if prefix:
            stage = prefix
            if rest:
                (v if prefix == "V" else f).append(rest)
            continue
        if stage == "V":
            v.append(item)
        elif stage == "F":
            f.append(item)
        else:
            v.append(item)
            f.append(item)
    return ",".join(v), ",".join(f)


def split_stage_prefixed_regex(values: Sequence[str]) -> Tuple[List[str], List[str]]:
    v, f = [], []
    for raw in values or []:
        item = raw.strip()
        prefix, rest = _strip_stage_prefix(item)
        if prefix == "V":
            if rest:
                v.append(rest)
        elif prefix == "F":
            if rest:
                f.append(rest)
        elif item:
            v.append(item)
            f.append(item)
    return v, f


def combine_regexes(values: Sequence[str]) -> str:
    return "|".join(f"(?:{v.strip()})" for v in values if v.strip())


def compile_filter_regex(values: Sequence[str]) -> Optional[Pattern]:
    combined = combine_regexes(values)
    if not combined:
        return None
    try:
        return re.compile(combined)
    except re.error as e:
        raise ConfigError(f"invalid filter regex '{combined}': {e}") from e


def extract_title(body: str) -> str:
    m = TITLE_RE.search(body or "")
    return m.group(1).strip() if m else ""


@dataclass(frozen=True)
class FilterSet:
    status: FrozenSet[int] = frozenset()
    size: FrozenSet[int] = frozenset()
    words: FrozenSet[int] = frozenset()
    lines: FrozenSet[int] = frozenset()
    regex: Optional[Pattern] = None

    @property
    def empty(self) -> bool:
        return not (self.status or self.size or self.words or self.lines or self.regex)

    def excludes(self, signature: ResponseSignature, body: str = "") -> bool:
        if self.status and signature.status in self.status:
            return True
        if self.size and signature.size in self.size:
            return True
        if self.words and signature.words in self.words:
            return True
        if self.lines and signature.lines in self.lines:
            return True
        if self.regex is not None and body:
            if self.regex.search(extract_title(body)) or self.regex.search(body[:BODY_SAMPLE]):
                return True
        return False

    def describe(self) -> str:
        parts = []
        for name in ("status", "size", "words", "lines"):
            values = getattr(self, name)
            if values:
                parts.append(f"{name}={','.join(str(v) for v in sorted(values))}")
        if self.regex is not None:
            parts.append("regex=...")
        return " ".join(parts)


def build_filters(status="", size="", words="", lines="", regex=None):
    """Returns ``{FilterStage.VALIDATE: FilterSet, FilterStage.FINGERPRINT: FilterSet}``."""
    parsed = {}
    for name, value in (("status", status), ("size", size), ("words", words), ("lines", lines)):
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        v, f = split_stage_prefixed_csv(str(value or ""))
        parsed[name] = (
            parse_status_set(v, field=f"filter_{name}") if name == "status" else _parse_counts(v, name),
            parse_status_set(f, field=f"filter_{name}") if name == "status" else _parse_counts(f, name),
        )

    if isinstance(regex, str):
        regex = [regex]
    v_re, f_re = split_stage_prefixed_regex(regex or [])

    return {
        FilterStage.VALIDATE: FilterSet(
            status=parsed["status"][0],
            size=parsed["size"][0],
            words=parsed["words"][0],
            lines=parsed["lines"][0],
            regex=compile_filter_regex(v_re),
        ),
        FilterStage.FINGERPRINT: FilterSet(
            status=parsed["status"][1],
            size=parsed["size"][1],
            words=parsed["words"][1],
            lines=parsed["lines"][1],
            regex=compile_filter_regex(f_re),
        ),
    }


def _parse_counts(value: str, name: str) -> FrozenSet[int]:
    out = set()
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            count = int(item)
        except ValueError:
            raise ConfigError(f"invalid filter_{name} value '{item}'")
        if count < 0:
            raise ConfigError(f"invalid filter_{name} value '{item}'")
        out.add(count)
    return frozenset(out)
