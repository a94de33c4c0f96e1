"""Template parameters for endpoint URLs, headers and bodies.

Two placeholder forms are supported:

- ``${NAME}``: value of the environment variable ``NAME``. Masked as ``***``
  in display output since these usually carry tokens.
- ``{{FORMAT}}``: current UTC time rendered with ``strftime(FORMAT)``, e.g.
  ``{{%Y-%m-%d}}``. ``{{%s}}`` renders epoch seconds on every platform.
"""

import os
import re
from datetime import UTC, datetime

from .models import HighlightSegment

_PLACEHOLDER_RE = re.compile(r"\$\{(?P<env>[A-Za-z_][A-Za-z0-9_]*)\}|\{\{(?P<time>[^{}]+)\}\}")

MASK = "***"


class ParameterError(ValueError):
    """Raised when a placeholder cannot be resolved."""


class ParameterResolver:
    """Resolve placeholders against the environment and a fixed clock.

    A single resolver should be shared by one run so every endpoint sees the
    same timestamp. With ``strict=False`` unset environment variables are
    left as literal ``${NAME}`` text instead of raising.
    """

    def __init__(
        self,
        now: datetime | None = None,
        environ: dict[str, str] | None = None,
        strict: bool = True,
    ) -> None:
        self._now = now or datetime.now(UTC)
        self._environ = environ if environ is not None else dict(os.environ)
        self._strict = strict

    def _value(self, match: re.Match) -> str:
        env_name = match.group("env")
        if env_name is not None:
            if env_name not in self._environ:
                if not self._strict:
                    return match.group(0)
                raise ParameterError(f"Environment variable '{env_name}' is not set")
            return self._environ[env_name]

        fmt = match.group("time")
        if fmt == "%s":
            return str(int(self._now.timestamp()))
        return self._now.strftime(fmt)

    def has_parameters(self, text: str) -> bool:
        return bool(_PLACEHOLDER_RE.search(text or ""))

    def resolve(self, text: str) -> str:
        """Return text with every placeholder substituted."""
        if not text:
            return text
        return _PLACEHOLDER_RE.sub(self._value, text)

    def resolve_mapping(self, values: dict[str, str]) -> dict[str, str]:
        return {self.resolve(key): self.resolve(value) for key, value in values.items()}

    def highlight(self, text: str) -> tuple[str, list[HighlightSegment]]:
        """Render text for display and mark substituted parts.

        Returns:
            Tuple of (display_text, segments). Segments are empty when the
            text contains no placeholders.
        """
        if not self.has_parameters(text):
            return text, []

        segments: list[HighlightSegment] = []
        pos = 0
        for match in _PLACEHOLDER_RE.finditer(text):
            if match.start() > pos:
                segments.append(HighlightSegment(text[pos : match.start()]))
            value = MASK if match.group("env") is not None else self._value(match)
            segments.append(HighlightSegment(value, highlight=True))
            pos = match.end()
        if pos < len(text):
            segments.append(HighlightSegment(text[pos:]))

        return "".join(seg.text for seg in segments), segments
