"""Tests for targets, traversal URLs, signatures and scan state."""

import pytest

from pathbuster.core.errors import ConfigError
from pathbuster.core.models import (
    Match,
    Response,
    ResponseSignature,
    ScanState,
    Stage,
    Target,
    depth_of,
    traversal_url,
)


class TestTarget:
    def test_segments(self) -> None:
        target = Target.parse("https://x/a/b/")
        assert target.segments == ("a", "b")
        assert target.base == "https://x"
        assert target.root_url == "https://x/"

    def test_root_has_no_segments(self) -> None:
        assert Target.parse("http://example.com").segments == ()

    def test_port_kept_in_base(self) -> None:
        assert Target.parse("http://example.com:8080/api").base == "http://example.com:8080"

    @pytest.mark.parametrize("url", ["example.com/app", "ftp://example.com/", "http:///nohost", ""])
    def test_invalid(self, url) -> None:
        with pytest.raises(ConfigError):
            Target.parse(url)

    def test_ignore_trailing_slash(self) -> None:
        assert Target.parse("https://x/a/", ignore_trailing_slash=True).url == "https://x/a"
        assert Target.parse("https://x/", ignore_trailing_slash=True).url == "https://x/"


class TestTraversalUrl:
    def test_depth_zero_pads_slash(self) -> None:
        assert traversal_url(Target.parse("https://x/a"), "../", 0) == "https://x/a/"

    def test_repeats_payload(self) -> None:
        target = Target.parse("https://example.com/app/")
        assert traversal_url(target, "../", 2) == "https://example.com/app/../../"
        assert traversal_url(target, "..%2f", 3, suffix="x") == "https://example.com/app/..%2f..%2f..%2fx"

    def test_query_dropped(self) -> None:
        target = Target.parse("https://x/a/?q=1#frag")
        assert traversal_url(target, "../", 1) == "https://x/a/../"

    def test_no_padding(self) -> None:
        target = Target.parse("https://x/a")
        assert traversal_url(target, "../", 1, pad_slash=False) == "https://x/a../"

    def test_ignore_trailing_slash_appends_directly(self) -> None:
        target = Target.parse("https://x/app/", ignore_trailing_slash=True)
        assert not target.pad_slash
        assert traversal_url(target, "..;/", 1) == "https://x/app..;/"
        assert depth_of(target, "https://x/app..;/..;/", "..;/") == 2

    @pytest.mark.parametrize("depth", [0, 1, 2])
    def test_depth_round_trip(self, depth) -> None:
        target = Target.parse("https://x/a/b/")
        assert depth_of(target, traversal_url(target, "../", depth, suffix="admin"), "../") == depth

    def test_depth_of_foreign_url(self) -> None:
        assert depth_of(Target.parse("https://x/a/"), "https://y/a/../", "../") is None


class TestSignature:
    def test_counts(self) -> None:
        sig = ResponseSignature.from_response(Response(url="u", status=200, body="one two\nthree\n"))
        assert sig.status == 200
        assert sig.size == len("one two\nthree\n")
        assert sig.words == 3
        assert sig.lines == 2
        assert sig.body_digest is None

    def test_reported_size_wins(self) -> None:
        sig = ResponseSignature.from_response(Response(url="u", status=200, body="abc", size=10))
        assert sig.size == 10

    def test_digest(self) -> None:
        a = ResponseSignature.from_response(Response(url="u", status=200, body="x"), digest=True)
        b = ResponseSignature.from_response(Response(url="v", status=200, body="x"), digest=True)
        assert a.body_digest == b.body_digest is not None

    def test_same_as_deviation(self) -> None:
        a = ResponseSignature(status=200, size=100, words=10, lines=3)
        b = ResponseSignature(status=200, size=102, words=11, lines=3)
        assert not a.same_as(b)
        assert a.same_as(b, deviation=2)
        assert not a.same_as(ResponseSignature(status=404, size=100, words=10, lines=3), deviation=50)


class TestScanState:
    def test_monotonic(self) -> None:
        state = ScanState(target=Target.parse("https://x/"))
        assert state.advance(Stage.VALIDATING)
        assert state.advance(Stage.VALIDATING)
        with pytest.raises(ValueError):
            state.advance(Stage.FINGERPRINTING)
        assert state.advance(Stage.DONE)
        assert not state.advance(Stage.BRUTE)
        assert state.finished

    def test_drop(self) -> None:
        state = ScanState(target=Target.parse("https://x/"))
        state.drop()
        assert state.dropped
        assert state.stage is Stage.DROPPED
        assert not state.advance(Stage.DONE)


def test_match_fields() -> None:
    sig = ResponseSignature(status=200, size=5, words=1, lines=1)
    out = Match(target="https://x/", stage="brute", url="https://x/../a", status=200, signature=sig, diff_score=12.0).to_dict()
    for key in ("target", "stage", "url", "status", "size", "words", "lines", "diff_score"):
        assert key in out
    assert out["size"] == 5
    assert out["matched"] is True
