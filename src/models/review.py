"""
Review data model.

Represents one customer review produced by the import step.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Review:
    """
    Customer review parsed from a spreadsheet row.
    Read-only once created; consumed only by the Batch Executor.
    """
    content: str  # Review body, never empty
    rating: float = 0.0  # 0 when absent, otherwise 0-5
    title: Optional[str] = None

    def __post_init__(self):
        if not self.content or not self.content.strip():
            raise ValueError("Review content must not be empty")

        if not (0 <= self.rating <= 5):
            raise ValueError(f"Invalid rating: {self.rating}. Must be 0-5")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        data = {"content": self.content, "rating": self.rating}
        if self.title:
            data["title"] = self.title
        return data
