"""
Review Importer.

Turns uploaded spreadsheet or CSV bytes into Review records.
"""

import io
import logging
import math
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from src.models.review import Review

logger = logging.getLogger(__name__)

CONTENT_COLUMNS = ("Content", "content", "Review", "review", "Text", "text", "Comment", "comment")
RATING_COLUMNS = ("Rating", "rating", "Score", "score")
TITLE_COLUMNS = ("Title", "title", "Subject", "subject")

EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
CSV_EXTENSIONS = (".csv",)


class ReviewImporter:
    """
    Parses review exports into Review objects.

    Column names are resolved through alias lists (first match wins).
    Rows with empty content are dropped here so the pipeline never sees them.
    """

    def parse_file(self, data: bytes, filename: str) -> List[Review]:
        """
        Parse one uploaded file.

        Args:
            data: Raw file bytes
            filename: Original file name, used to pick the reader

        Returns:
            List of Review objects in row order

        Raises:
            ValueError: If the file type is unsupported or no content column exists
        """
        df = self._read_frame(data, filename)

        content_col = self._resolve_column(df, CONTENT_COLUMNS)
        if content_col is None:
            raise ValueError(
                f"No review content column in {filename}. "
                f"Expected one of: {', '.join(CONTENT_COLUMNS)}"
            )
        rating_col = self._resolve_column(df, RATING_COLUMNS)
        title_col = self._resolve_column(df, TITLE_COLUMNS)

        reviews = []
        skipped = 0
        for _, row in df.iterrows():
            content = self._clean_text(row[content_col])
            if not content:
                skipped += 1
                continue

            rating = self._parse_rating(row[rating_col]) if rating_col else 0.0
            title = self._clean_text(row[title_col]) if title_col else None

            reviews.append(Review(content=content, rating=rating, title=title or None))

        logger.info(
            f"Parsed {len(reviews)} reviews from {filename} "
            f"({skipped} empty rows skipped)"
        )
        return reviews

    def parse_files(self, files: Iterable[Tuple[bytes, str]]) -> List[Review]:
        """Parse several files, concatenating reviews in file order."""
        reviews: List[Review] = []
        for data, filename in files:
            reviews.extend(self.parse_file(data, filename))
        return reviews

    def _read_frame(self, data: bytes, filename: str) -> pd.DataFrame:
        name = filename.lower()
        buffer = io.BytesIO(data)

        if name.endswith(EXCEL_EXTENSIONS):
            # First sheet only
            return pd.read_excel(buffer, sheet_name=0, dtype=str, engine="openpyxl")
        if name.endswith(CSV_EXTENSIONS):
            return pd.read_csv(buffer, dtype=str, keep_default_na=False)

        raise ValueError(f"Unsupported file type: {filename}")

    @staticmethod
    def _resolve_column(df: pd.DataFrame, aliases: Tuple[str, ...]) -> Optional[str]:
        for alias in aliases:
            if alias in df.columns:
                return alias
        return None

    @staticmethod
    def _clean_text(value) -> str:
        if value is None:
            return ""
        if isinstance(value, float) and math.isnan(value):
            return ""
        return str(value).strip()

    @staticmethod
    def _parse_rating(value) -> float:
        """Parse a rating cell; anything unparsable or out of range becomes 0."""
        try:
            rating = float(str(value).strip())
        except (TypeError, ValueError):
            return 0.0

        if math.isnan(rating):
            return 0.0
        if not (0 <= rating <= 5):
            logger.warning(f"Rating {rating} out of range 0-5, treating as absent")
            return 0.0
        return rating
