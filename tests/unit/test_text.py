"""Unit tests for the plain-text RFC helpers."""

from __future__ import annotations

from rfcli.text import clean_rfc_text, extract_abstract, first_sentences, parse_sections


class TestCleanRfcText:
    def test_strips_page_furniture(self, sample_rfc_text: str) -> None:
        cleaned = clean_rfc_text(sample_rfc_text)
        assert "[Page 1]" not in cleaned
        assert "\x0c" not in cleaned
        assert "RFC Key Words" not in cleaned
        # Front-matter mentions of the number are body text, not headers.
        assert "Request for Comments: 2119" in cleaned

    def test_squeezes_blank_runs(self, sample_rfc_text: str) -> None:
        assert "\n\n\n" not in clean_rfc_text(sample_rfc_text)

    def test_normalises_crlf(self) -> None:
        assert clean_rfc_text("a\r\nb\r\n") == "a\nb\n"


class TestParseSections:
    def test_numbered_and_named_headings(self) -> None:
        content = (
            "Abstract\n"
            "\n"
            "   Body text.\n"
            "1. Introduction\n"
            "   3. Indented lines are never headings\n"
            "1.1.  Scope\n"
            "Appendix A. Extra Material\n"
        )
        assert parse_sections(content) == (
            "1: Abstract\n4: 1. Introduction\n6: 1.1.  Scope\n7: Appendix A. Extra Material"
        )

    def test_sample_document(self, sample_rfc_text: str) -> None:
        headings = [
            line.split(": ", 1)[1]
            for line in parse_sections(clean_rfc_text(sample_rfc_text)).splitlines()
        ]
        assert headings == ["Status of this Memo", "Abstract", "1. MUST", "2. MUST NOT"]

    def test_no_headings(self) -> None:
        assert parse_sections("   just indented text\n   more of it") == ""

    def test_empty(self) -> None:
        assert parse_sections("") == ""


class TestExtractAbstract:
    def test_collapses_abstract_paragraph(self, sample_rfc_text: str) -> None:
        assert extract_abstract(sample_rfc_text) == (
            "In many standards track documents several words are used to signify the "
            "requirements in the specification. These words are often capitalized. "
            "This document defines these words as they should be interpreted in IETF "
            "documents."
        )

    def test_missing_abstract(self) -> None:
        assert extract_abstract("1. Introduction\n\n   Text.\n") is None

    def test_empty_abstract(self) -> None:
        assert extract_abstract("Abstract\n\n1. Introduction\n") is None


class TestFirstSentences:
    def test_splits_on_terminal_punctuation(self) -> None:
        paragraph = "One. Two! Three? four."
        assert first_sentences(paragraph, 5) == ["One.", "Two!", "Three? four."]
        assert first_sentences(paragraph, 2) == ["One.", "Two!"]

    def test_version_numbers_do_not_split(self) -> None:
        assert first_sentences("TLS 1.3 is here. Done.", 5) == ["TLS 1.3 is here.", "Done."]
