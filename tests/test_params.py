"""Tests for the params module."""

from datetime import UTC, datetime

import pytest

from ponghub.models import HighlightSegment
from ponghub.params import MASK, ParameterError, ParameterResolver

NOW = datetime(2026, 5, 4, 3, 2, 1, tzinfo=UTC)


@pytest.fixture
def resolver() -> ParameterResolver:
    return ParameterResolver(now=NOW, environ={"TOKEN": "abc123", "HOST": "api.example.com"})


class TestResolve:
    """Tests for ParameterResolver.resolve."""

    def test_plain_text_unchanged(self, resolver: ParameterResolver) -> None:
        assert resolver.resolve("https://example.com/health") == "https://example.com/health"

    def test_empty_text(self, resolver: ParameterResolver) -> None:
        assert resolver.resolve("") == ""

    def test_environment_variable(self, resolver: ParameterResolver) -> None:
        assert resolver.resolve("https://${HOST}/?t=${TOKEN}") == "https://api.example.com/?t=abc123"

    def test_missing_environment_variable(self, resolver: ParameterResolver) -> None:
        with pytest.raises(ParameterError, match="MISSING"):
            resolver.resolve("${MISSING}")

    def test_time_format(self, resolver: ParameterResolver) -> None:
        assert resolver.resolve("/report/{{%Y-%m-%d}}") == "/report/2026-05-04"

    def test_epoch_seconds(self, resolver: ParameterResolver) -> None:
        assert resolver.resolve("?ts={{%s}}") == f"?ts={int(NOW.timestamp())}"

    def test_resolve_mapping(self, resolver: ParameterResolver) -> None:
        assert resolver.resolve_mapping({"Authorization": "Bearer ${TOKEN}"}) == {"Authorization": "Bearer abc123"}

    def test_has_parameters(self, resolver: ParameterResolver) -> None:
        assert resolver.has_parameters("a{{%H}}b") is True
        assert resolver.has_parameters("https://example.com") is False


class TestHighlight:
    """Tests for ParameterResolver.highlight."""

    def test_no_parameters_returns_text_without_segments(self, resolver: ParameterResolver) -> None:
        assert resolver.highlight("https://example.com") == ("https://example.com", [])

    def test_marks_substituted_time(self, resolver: ParameterResolver) -> None:
        display, segments = resolver.highlight("https://example.com/{{%Y}}/x")

        assert display == "https://example.com/2026/x"
        assert segments == [
            HighlightSegment("https://example.com/"),
            HighlightSegment("2026", highlight=True),
            HighlightSegment("/x"),
        ]

    def test_masks_environment_values(self, resolver: ParameterResolver) -> None:
        display, segments = resolver.highlight("https://example.com/?key=${TOKEN}")

        assert display == f"https://example.com/?key={MASK}"
        assert "abc123" not in display
        assert segments[-1] == HighlightSegment(MASK, highlight=True)

    def test_masks_missing_environment_values(self, resolver: ParameterResolver) -> None:
        """Display never fails, even when a variable is unset."""
        display, _ = resolver.highlight("https://example.com/${MISSING}")

        assert display == f"https://example.com/{MASK}"


class TestNonStrictResolve:
    """Tests for ParameterResolver with strict=False."""

    def test_missing_variable_left_as_placeholder(self) -> None:
        resolver = ParameterResolver(now=NOW, environ={"TOKEN": "abc123"}, strict=False)

        assert resolver.resolve("${TOKEN}/${MISSING}/{{%Y}}") == "abc123/${MISSING}/2026"
