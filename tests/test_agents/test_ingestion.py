"""
Unit tests for the Review Importer.
"""

import io

import pandas as pd
import pytest
from src.agents.ingestion import ReviewImporter


@pytest.fixture
def importer():
    return ReviewImporter()


def test_csv_with_aliased_columns(importer):
    data = (
        "review,score,subject\n"
        "Arrived crushed,2,Bad box\n"
        "Love the flavor,5,\n"
    ).encode("utf-8")

    reviews = importer.parse_file(data, "export.csv")

    assert len(reviews) == 2
    assert reviews[0].content == "Arrived crushed"
    assert reviews[0].rating == 2
    assert reviews[0].title == "Bad box"
    assert reviews[1].title is None


def test_empty_content_rows_are_dropped(importer):
    data = "Content,Rating\nGood,4\n   ,5\n,3\nFine,3\n".encode("utf-8")

    reviews = importer.parse_file(data, "reviews.csv")

    assert [r.content for r in reviews] == ["Good", "Fine"]


def test_bad_or_out_of_range_rating_becomes_zero(importer):
    data = "Content,Rating\nA,five\nB,9\nC,\nD,3.5\n".encode("utf-8")

    reviews = importer.parse_file(data, "reviews.csv")

    assert [r.rating for r in reviews] == [0, 0, 0, 3.5]


def test_missing_rating_column(importer):
    reviews = importer.parse_file("Text\nWorks well\n".encode("utf-8"), "reviews.csv")

    assert reviews[0].rating == 0


def test_missing_content_column_raises(importer):
    with pytest.raises(ValueError, match="No review content column"):
        importer.parse_file("Rating,Title\n5,Nice\n".encode("utf-8"), "reviews.csv")


def test_unsupported_file_type(importer):
    with pytest.raises(ValueError, match="Unsupported file type"):
        importer.parse_file(b"anything", "reviews.txt")


def test_legacy_xls_rejected_as_unsupported(importer):
    """Legacy BIFF workbooks raise ValueError, never a missing-reader ImportError."""
    ole_header = b"\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1" + b"\x00" * 504

    with pytest.raises(ValueError, match="Unsupported file type"):
        importer.parse_file(ole_header, "reviews.xls")


def test_xlsx_first_sheet(importer):
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        pd.DataFrame({
            "Content": ["Too sweet", None, "Perfect gift"],
            "Rating": [2, 4, 5],
            "Title": ["Meh", "Empty", None],
        }).to_excel(writer, sheet_name="Reviews", index=False)
        pd.DataFrame({"Content": ["Other sheet"]}).to_excel(writer, sheet_name="Other", index=False)

    reviews = importer.parse_file(buffer.getvalue(), "Reviews.XLSX")

    assert [r.content for r in reviews] == ["Too sweet", "Perfect gift"]
    assert [r.rating for r in reviews] == [2, 5]
    assert reviews[0].title == "Meh"
    assert reviews[1].title is None


def test_parse_files_concatenates_in_order(importer):
    first = ("Content\nOne\nTwo\n".encode("utf-8"), "a.csv")
    second = ("Content\nThree\n".encode("utf-8"), "b.csv")

    reviews = importer.parse_files([first, second])

    assert [r.content for r in reviews] == ["One", "Two", "Three"]


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
