"""
Shared data types for bbreview.

InlineItem and DeliveryOutcome are produced by the suggestion validator and
the delivery engine respectively, and consumed by the pipeline. They live
here to avoid circular imports.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class InlineItem:
    """A validated inline comment, ready to post."""
    path: str  # Destination-side file path
    line: int  # Destination line number (suggestion's relevant_lines_end)
    message: str  # Rendered markdown body


@dataclass
class DeliveryOutcome:
    """Result of posting one item. Exactly one of id/error is set."""
    path: str
    line: int
    id: Optional[Any] = None  # Remote comment id on success
    error: Optional[str] = None  # Final error text on failure

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.succeeded:
            return {"path": self.path, "line": self.line, "id": self.id}
        return {"path": self.path, "line": self.line, "error": self.error}
