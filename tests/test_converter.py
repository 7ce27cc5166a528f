"""Unit tests for TextExtractor."""

from __future__ import annotations

from unittest.mock import patch

from mail_ingestor.core.converter import TextExtractor


class TestPlainTextPreferred:
    """text/plain wins whenever it has content."""

    def test_plain_text_used(self) -> None:
        with patch("mail_ingestor.core.converter.trafilatura") as mock_traf:
            result = TextExtractor().extract("  Hello  \n", "<p>ignored</p>")
        assert result == "Hello"
        mock_traf.extract.assert_not_called()

    def test_blank_plain_text_falls_through(self) -> None:
        with patch("mail_ingestor.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.return_value = "From HTML"
            result = TextExtractor().extract("   ", "<p>From HTML</p>")
        assert result == "From HTML"


class TestHtmlExtraction:
    """HTML bodies go through trafilatura."""

    def test_extract_params(self) -> None:
        html = "<html><body><p>Content</p></body></html>"
        with patch("mail_ingestor.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.return_value = "Content\n"
            result = TextExtractor().extract(None, html)

        assert result == "Content"
        mock_traf.extract.assert_called_once_with(
            html,
            output_format="txt",
            favor_recall=True,
            include_links=False,
            include_tables=True,
        )

    def test_extraction_error_returns_empty(self) -> None:
        with patch("mail_ingestor.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.side_effect = RuntimeError("lxml exploded")
            assert TextExtractor().extract(None, "<p>x</p>") == ""

    def test_extraction_none_returns_empty(self) -> None:
        with patch("mail_ingestor.core.converter.trafilatura") as mock_traf:
            mock_traf.extract.return_value = None
            assert TextExtractor().extract(None, "<p>x</p>") == ""

    def test_no_body(self) -> None:
        assert TextExtractor().extract(None, None) == ""
