"""Rendering of active patterns into the session-start context block.

The output is a small markdown section:

    ## User Behavioral Patterns

    Observed habits of this user. Follow them unless told otherwise.

    - **Verify before claiming done**: Run the test suite before ...
    - **Overview first**: Summarize the structure before ...

Rendering is a pure function of the pattern list and the config, so the same
stored state always produces the same text.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from habitual.core.config import ContextConfig
from habitual.core.logging import get_logger
from habitual.patterns.models import PatternRecord, PatternStatus
from habitual.patterns.sanitize import collapse_whitespace

_logger = get_logger("patterns.context")

LEAD_IN = "Observed habits of this user. Follow them unless told otherwise."


class ActivePatternSource(Protocol):
    """Anything that can list patterns by status (PatternStore does)."""

    def list_patterns(
        self,
        status: PatternStatus | str | None = None,
        category: str | None = None,
    ) -> list[PatternRecord]: ...


def _injection_order(pattern: PatternRecord) -> tuple[float, float, str]:
    return (-pattern.weight, -pattern.last_reinforced.timestamp(), pattern.id)


def render_context(
    patterns: Iterable[PatternRecord],
    config: ContextConfig | None = None,
) -> str:
    """Render the context block for the given patterns.

    Only active patterns are rendered, highest weight first, then most
    recently reinforced, then by id. Entries are added while both
    ``max_patterns`` and ``max_chars`` allow; an entry that would overflow
    ``max_chars`` ends the list.

    Args:
        patterns: Candidate patterns, in any order and any status.
        config: Rendering limits. Defaults to ContextConfig().

    Returns:
        The markdown block ending in a newline, or "" when nothing is
        eligible.
    """
    config = config or ContextConfig()
    active = sorted(
        (p for p in patterns if p.status == PatternStatus.ACTIVE),
        key=_injection_order,
    )
    if not active:
        return ""

    header = f"## {collapse_whitespace(config.heading)}\n\n{LEAD_IN}\n\n"
    body: list[str] = []
    length = len(header)
    for pattern in active[: config.max_patterns]:
        name = collapse_whitespace(pattern.name)
        line = f"- **{name}**: {collapse_whitespace(pattern.instruction)}\n"
        if length + len(line) > config.max_chars:
            break
        body.append(line)
        length += len(line)

    if not body:
        return ""
    return header + "".join(body)


class ContextInjector:
    """Reads active patterns from a store and renders the context block."""

    def __init__(
        self,
        store: ActivePatternSource,
        config: ContextConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or ContextConfig()

    def render(self) -> str:
        patterns = self.store.list_patterns(status=PatternStatus.ACTIVE)
        text = render_context(patterns, self.config)
        _logger.debug(
            "context_rendered",
            candidate_count=len(patterns),
            chars=len(text),
        )
        return text


__all__ = ["LEAD_IN", "ActivePatternSource", "ContextInjector", "render_context"]
