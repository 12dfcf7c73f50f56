"""
Unit tests for core/dedup.py
"""

from app.models import SourceType
from core.dedup import (
    compute_dedup_key,
    content_fingerprint,
    dedup_key_for,
    normalize_text,
    normalize_url,
)
from fakes import make_posting


class TestNormalization:
    def test_normalize_text_strips_accents_and_punctuation(self):
        assert normalize_text("  Café-Backend   Engineer!! ") == "cafe backend engineer"

    def test_normalize_text_ampersand(self):
        assert normalize_text("AT&T") == "at and t"

    def test_normalize_text_empty(self):
        assert normalize_text(None) == ""
        assert normalize_text("") == ""

    def test_normalize_url_drops_tracking_and_fragment(self):
        url = "https://WWW.Example.com/jobs/123/?utm_source=linkedin&gh_src=abc&team=eng#apply"
        assert normalize_url(url) == "example.com/jobs/123?team=eng"

    def test_normalize_url_sorts_query(self):
        assert normalize_url("https://example.com/j?b=2&a=1") == normalize_url("https://example.com/j?a=1&b=2")


class TestDedupKey:
    def test_ats_key_uses_native_id(self):
        key = compute_dedup_key("src-1", SourceType.GREENHOUSE, external_id="4012", apply_url="https://x.com/a")
        assert key == "src-1:4012"

    def test_ats_key_falls_back_to_url(self):
        a = compute_dedup_key("src-1", SourceType.LEVER, apply_url="https://jobs.lever.co/acme/1?lever-source=x")
        b = compute_dedup_key("src-1", SourceType.LEVER, apply_url="https://jobs.lever.co/acme/1/")
        assert a == b
        assert a.startswith("src-1:url:")

    def test_same_native_id_on_different_sources_differs(self):
        a = compute_dedup_key("src-1", SourceType.GREENHOUSE, external_id="1")
        b = compute_dedup_key("src-2", SourceType.GREENHOUSE, external_id="1")
        assert a != b

    def test_search_key_ignores_case_and_punctuation(self):
        a = compute_dedup_key("s", SourceType.SEARCH, title="Software Engineer, Intern", company="Acme Inc.", location="NYC")
        b = compute_dedup_key("s", SourceType.SEARCH, title="software engineer intern", company="ACME INC", location="nyc")
        assert a == b
        assert a.startswith("hash:")

    def test_search_key_ignores_source_and_url(self):
        a = compute_dedup_key("s1", SourceType.SEARCH, apply_url="https://a.com/1", title="T", company="C")
        b = compute_dedup_key("s2", SourceType.SEARCH, apply_url="https://b.com/2", title="T", company="C")
        assert a == b

    def test_key_is_deterministic(self):
        posting = make_posting(5)
        assert dedup_key_for("src-1", SourceType.ASHBY, posting) == dedup_key_for("src-1", SourceType.ASHBY, posting)


class TestContentFingerprint:
    def test_whitespace_only_edits_keep_fingerprint(self):
        a = make_posting(1, description="Build   things\nwith Python.")
        b = make_posting(1, description="Build things with Python.")
        assert content_fingerprint(a) == content_fingerprint(b)

    def test_description_change_changes_fingerprint(self):
        a = make_posting(1, description="Build things with Python.")
        b = make_posting(1, description="Build things with Go.")
        assert content_fingerprint(a) != content_fingerprint(b)

    def test_apply_url_is_not_a_mutable_field(self):
        a = make_posting(1, apply_url="https://a.com/1")
        b = make_posting(1, apply_url="https://a.com/1?utm_source=x")
        assert content_fingerprint(a) == content_fingerprint(b)
