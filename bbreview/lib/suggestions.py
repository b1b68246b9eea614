"""
Inline suggestion validation and rendering.

Raw suggestions from the generation engine are untrusted dicts. They are
converted to ValidatedSuggestion by parse_suggestion() (schema check against
schemas/suggestion.schema.json), filtered by score threshold and, in strict
mode, by the diff's valid-line-sets, then rendered into InlineItems.

Input order is preserved throughout: the engine is asked to emit its most
important findings first, and delivery caps the batch from the front.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from bbreview.diff.parser import ParsedDiff, valid_line_map
from bbreview.lib.types import InlineItem
from bbreview.lib.validate import validate, ValidationError

logger = logging.getLogger(__name__)

# Suggestions scored below this are never posted
SCORE_THRESHOLD = 6

# At most this many raw candidates are examined per batch
MAX_CANDIDATES = 25

MAX_STARS = 5


class Label(str, Enum):
    BUG_RISK = "bug_risk"
    SECURITY = "security"
    PERFORMANCE = "performance"
    CODE_SMELL = "code_smell"
    BEST_PRACTICE = "best_practice"
    TODO_CLEANUP = "todo_cleanup"


LABEL_EMOJI = {
    Label.BUG_RISK: "🐛",
    Label.SECURITY: "🔒",
    Label.PERFORMANCE: "⚡",
    Label.CODE_SMELL: "👃",
    Label.BEST_PRACTICE: "✅",
    Label.TODO_CLEANUP: "🧹",
}


class SuggestionRejected(Exception):
    """A raw suggestion failed schema, threshold or line checks."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass(frozen=True)
class ValidatedSuggestion:
    """A suggestion whose fields have all been type-checked."""
    relevant_file: str
    relevant_lines_start: int
    relevant_lines_end: int
    suggestion_content: str
    label: Label
    score: int
    existing_code: Optional[str] = None
    improved_code: Optional[str] = None


@dataclass
class ValidationOptions:
    """Policy knobs for validate_suggestions()."""
    strict_lines: bool = True  # Reject lines outside the diff's visible hunks
    dedupe_per_line: bool = False  # Keep only the first suggestion per (file, line)
    max_candidates: int = MAX_CANDIDATES
    score_threshold: int = SCORE_THRESHOLD


def parse_suggestion(raw: Any) -> ValidatedSuggestion:
    """Convert an untrusted engine dict into a ValidatedSuggestion.

    Raises:
        SuggestionRejected: If a required field is missing or mistyped, the
            label is outside the closed set, or score is outside 1-10.
    """
    try:
        validate(raw, "suggestion")
    except ValidationError as e:
        raise SuggestionRejected(f"schema: {e.message} at {e.path}") from None

    return ValidatedSuggestion(
        relevant_file=raw["relevant_file"],
        relevant_lines_start=int(raw["relevant_lines_start"]),
        relevant_lines_end=int(raw["relevant_lines_end"]),
        suggestion_content=raw["suggestion_content"],
        label=Label(raw["label"]),
        score=int(raw["score"]),
        existing_code=raw.get("existing_code") or None,
        improved_code=raw.get("improved_code") or None,
    )


def star_rating(score: int) -> str:
    """1-10 score -> 1-5 stars (half the score, rounded up)."""
    return "⭐" * min(MAX_STARS, math.ceil(score / 2))


def render_message(suggestion: ValidatedSuggestion) -> str:
    """Render the markdown body posted as the inline comment."""
    label_text = suggestion.label.value.replace("_", " ").upper()
    lines = [
        f"{LABEL_EMOJI[suggestion.label]} **{label_text}** {star_rating(suggestion.score)}",
        "",
        suggestion.suggestion_content.strip(),
    ]

    if suggestion.existing_code:
        lines += ["", "**Current code:**", "```", suggestion.existing_code.rstrip("\n"), "```"]

    if suggestion.improved_code:
        lines += ["", "**Suggested change:**", "```", suggestion.improved_code.rstrip("\n"), "```"]

    return "\n".join(lines)


def check_policy(
    suggestion: ValidatedSuggestion,
    valid_lines: dict[str, set[int]],
    options: ValidationOptions,
) -> None:
    """Apply score and line-bound policy.

    Raises:
        SuggestionRejected: If the suggestion must not be posted.
    """
    if suggestion.score < options.score_threshold:
        raise SuggestionRejected(
            f"score {suggestion.score} below threshold {options.score_threshold}"
        )

    if not options.strict_lines:
        return

    lines = valid_lines.get(suggestion.relevant_file)
    if lines is None:
        raise SuggestionRejected(f"file not in diff: {suggestion.relevant_file}")
    if suggestion.relevant_lines_end not in lines:
        raise SuggestionRejected(
            f"line {suggestion.relevant_lines_end} not in diff for {suggestion.relevant_file}"
        )


def validate_suggestions(
    raw_items: list[Any],
    parsed_diff: ParsedDiff,
    options: Optional[ValidationOptions] = None,
) -> list[InlineItem]:
    """Validate raw engine suggestions and render the accepted ones.

    Rejected candidates are skipped, never fatal. Output order matches
    input order.
    """
    options = options or ValidationOptions()
    valid_lines = valid_line_map(parsed_diff)

    accepted = []
    seen_lines = set()
    candidates = raw_items[:options.max_candidates]
    if len(raw_items) > options.max_candidates:
        logger.info(
            f"Examining first {options.max_candidates} of {len(raw_items)} suggestions"
        )

    for idx, raw in enumerate(candidates):
        try:
            suggestion = parse_suggestion(raw)
            check_policy(suggestion, valid_lines, options)
        except SuggestionRejected as e:
            logger.debug(f"Suggestion {idx} rejected: {e.reason}")
            continue

        key = (suggestion.relevant_file, suggestion.relevant_lines_end)
        if options.dedupe_per_line and key in seen_lines:
            logger.debug(f"Suggestion {idx} rejected: duplicate for {key[0]}:{key[1]}")
            continue
        seen_lines.add(key)

        accepted.append(InlineItem(
            path=suggestion.relevant_file,
            line=suggestion.relevant_lines_end,
            message=render_message(suggestion),
        ))

    logger.info(f"Accepted {len(accepted)} of {len(candidates)} suggestions")
    return accepted
