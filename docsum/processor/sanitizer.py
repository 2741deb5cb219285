"""Pure text clean-up applied between extraction and summarization."""

import re
import unicodedata

SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
HTML_TAG = re.compile(r"<[^>]*>")
JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
DATA_URL = re.compile(r"data:[^;]*;base64,[^\"'\s]*", re.IGNORECASE)
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
INLINE_SPACE = re.compile(r"[ \t\r\f\v]+")
BLANK_LINES = re.compile(r"\n\s*\n+")

PAGE_OF_LABEL = re.compile(r"^\s*Page \d+ of \d+\s*$", re.MULTILINE)
BARE_PAGE_NUMBER = re.compile(r"^\s*\d+\s*$", re.MULTILINE)
HEADER_FOOTER_LABEL = re.compile(r"^(Header|Footer):\s*", re.MULTILINE)
SENTENCE_JOIN = re.compile(r"([.!?])\s*([A-Z])")
EXCESS_NEWLINES = re.compile(r"\n{3,}")


def sanitize_extracted_text(text: str) -> str:
    """
    Strip markup and unsafe content from extracted text.

    Removes script blocks, HTML tags, ``javascript:`` protocols, base64 data
    URLs and control characters, then NFKC-normalizes and collapses runs of
    whitespace. Paragraph breaks survive as a single blank line.
    """
    if not text:
        return ""

    text = SCRIPT_BLOCK.sub("", text)
    text = HTML_TAG.sub("", text)
    text = JS_PROTOCOL.sub("", text)
    text = DATA_URL.sub("", text)
    text = CONTROL_CHARS.sub("", text)
    text = unicodedata.normalize("NFKC", text)
    text = INLINE_SPACE.sub(" ", text)
    text = BLANK_LINES.sub("\n\n", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()


def preprocess_document_text(text: str) -> str:
    """Remove PDF layout artifacts (page labels, header/footer tags) before prompting."""
    if not text:
        return ""

    text = CONTROL_CHARS.sub("", text)
    text = unicodedata.normalize("NFKC", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = PAGE_OF_LABEL.sub("", text)
    text = BARE_PAGE_NUMBER.sub("", text)
    text = SENTENCE_JOIN.sub(r"\1 \2", text)
    text = HEADER_FOOTER_LABEL.sub("", text)
    text = EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def word_count(text: str) -> int:
    return len(text.split())
