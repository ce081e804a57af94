"""Tests for slugs, tag names and token estimation."""

from __future__ import annotations

import pytest

from pluqqy.errors import ValidationError
from pluqqy.utils.naming import (
    TAG_PALETTE,
    dedupe_tags,
    normalize_tag,
    slugify,
    tag_color,
    validate_display_name,
    validate_tag,
)
from pluqqy.utils.tokens import TokenStatus, estimate_tokens, format_token_count, token_status


class TestSlugify:
    @pytest.mark.parametrize(
        "name,slug",
        [
            ("Foo", "foo"),
            ("Bar Baz", "bar-baz"),
            ("  API -- Design!! ", "api-design"),
            ("already-slug", "already-slug"),
            ("!!!", "unnamed"),
        ],
    )
    def test_slugify(self, name, slug):
        assert slugify(name) == slug

    def test_idempotent(self):
        assert slugify(slugify("Hello, World")) == slugify("Hello, World")


class TestDisplayNames:
    def test_trims(self):
        assert validate_display_name("  Name  ") == "Name"

    @pytest.mark.parametrize("name", ["", "   ", "x" * 101, "!!!"])
    def test_rejects(self, name):
        with pytest.raises(ValidationError):
            validate_display_name(name)

    def test_length_boundary(self):
        assert validate_display_name("x" * 100) == "x" * 100


class TestTags:
    def test_normalize(self):
        assert normalize_tag("  My Tag ") == "my-tag"
        assert normalize_tag("Lang/Python") == "lang/python"
        assert normalize_tag("a_b!c") == "abc"

    def test_validate(self):
        assert validate_tag("Web API") == "web-api"
        with pytest.raises(ValidationError):
            validate_tag("bad_tag")
        with pytest.raises(ValidationError):
            validate_tag("x" * 51)
        with pytest.raises(ValidationError):
            validate_tag("  ")

    def test_dedupe_keeps_order(self):
        assert dedupe_tags(["B", "a", "b", "", "A "]) == ["b", "a"]

    def test_color_is_deterministic_and_case_insensitive(self):
        assert tag_color("api") == tag_color("API")
        assert tag_color("api") in TAG_PALETTE


class TestTokens:
    def test_estimate(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_monotone(self):
        counts = [estimate_tokens("x" * n) for n in range(0, 50)]
        assert counts == sorted(counts)

    def test_status_bands(self):
        assert token_status(9_999) == TokenStatus.GOOD
        assert token_status(10_000) == TokenStatus.WARNING
        assert token_status(50_000) == TokenStatus.DANGER

    def test_format(self):
        assert format_token_count(850) == "~850 tokens"
        assert format_token_count(1_500) == "~1.5K tokens"
        assert format_token_count(12_500) == "~12K tokens"
