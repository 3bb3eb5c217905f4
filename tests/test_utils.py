"""
Tests for page selection resolution and filename helpers.
"""

import pytest

from pdf_toolkit_backend.utils import (
    normalize_angle,
    resolve_order,
    resolve_pages,
    sanitize_filename,
    validate_page_expression,
)


class TestResolvePages:
    """Tests for resolve_pages."""

    def test_expression(self):
        """Mixed singles and ranges expand to sorted page numbers."""
        assert resolve_pages("1,3,5-7", 8) == [1, 3, 5, 6, 7]

    def test_out_of_range_entries_dropped(self):
        """Entries outside the document should be dropped."""
        assert resolve_pages("0,2,9", 4) == [2]
        assert resolve_pages([9, 2, 2, 0, -1], 4) == [2]

    def test_open_range_runs_to_last_page(self):
        """An open range should run to the last page."""
        assert resolve_pages("5-", 7) == [5, 6, 7]

    def test_reversed_range(self):
        """A reversed range should be swapped."""
        assert resolve_pages("4-2", 5) == [2, 3, 4]

    def test_range_clamped_to_document(self):
        """A huge range should be clamped to the document."""
        assert resolve_pages("3-999999", 4) == [3, 4]

    def test_duplicates_and_whitespace(self):
        """Duplicates and whitespace should be tolerated."""
        assert resolve_pages(" 2 , 2, 1 - 2 ", 3) == [1, 2]

    def test_nothing_in_range(self):
        """A range beyond the document should resolve to nothing."""
        assert resolve_pages("9-12", 5) == []

    def test_list_is_sorted(self):
        """Page lists should be sorted."""
        assert resolve_pages([3, 1], 3) == [1, 3]


class TestValidatePageExpression:
    """Syntax checks that run before any document is loaded."""

    @pytest.mark.parametrize("expression", ["1", "1,3,5-7", "5-", " 2 - 4 ", "1,,2"])
    def test_valid(self, expression):
        """Well-formed expressions should pass unchanged."""
        assert validate_page_expression(expression) == expression

    @pytest.mark.parametrize("expression", ["", " , ", "a", "1-b", "-3", "1;2", "1-2-3"])
    def test_invalid(self, expression):
        """Malformed expressions should raise ValueError."""
        with pytest.raises(ValueError):
            validate_page_expression(expression)


class TestResolveOrder:
    """Tests for resolve_order."""

    def test_keeps_caller_order(self):
        """The requested order should be kept."""
        assert resolve_order([3, 1, 2], 3) == [3, 1, 2]

    def test_drops_invalid_indices(self):
        """Indices outside the document should be dropped."""
        assert resolve_order([0, 2, 9, 1], 3) == [2, 1]

    def test_duplicates_kept(self):
        """Repeated indices should be kept."""
        assert resolve_order([1, 1], 2) == [1, 1]


class TestNormalizeAngle:
    """Tests for normalize_angle."""

    @pytest.mark.parametrize(
        "angle, expected",
        [(0, 0), (90, 90), (360, 0), (450, 90), (-90, 270), (-270, 90), (720, 0)],
    )
    def test_normalize(self, angle, expected):
        """Angles should be normalized into 0-359."""
        assert normalize_angle(angle) == expected


class TestSanitizeFilename:
    """Tests for sanitize_filename."""

    def test_keeps_safe_name(self):
        """Safe names should be kept."""
        assert sanitize_filename("report_2024.pdf", "document.pdf") == "report_2024.pdf"

    def test_replaces_unsafe_characters(self):
        """Unsafe characters should be replaced with hyphens."""
        assert sanitize_filename("My Report (final).pdf", "document.pdf") == "My-Report-final.pdf"

    def test_strips_directories(self):
        """Directory components should be removed."""
        assert sanitize_filename("../../etc/passwd", "document.pdf") == "passwd.pdf"

    def test_forces_pdf_extension(self):
        """The extension should always be .pdf."""
        assert sanitize_filename("notes.txt", "document.pdf") == "notes.pdf"

    def test_fallback(self):
        """Unusable names should fall back to the default."""
        assert sanitize_filename("@#$", "document.pdf") == "document.pdf"
        assert sanitize_filename("", "merged.pdf") == "merged.pdf"
