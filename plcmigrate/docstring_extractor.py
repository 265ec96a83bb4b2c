"""
Docstring extraction from Structured Text block comments.

Legacy PLC code keeps most of its documentation in header comments above
POUs. This module finds the substantial ones (multi-line, or at least
100 characters), strips their decoration, and sorts each line into summary,
description, parameters, return value, authorship, history and warnings.
"""

import logging
import re
from typing import List, Optional

from .models import Docstring, DocParam, HistoryEntry, SourceLocation
from .tokenizer import Token, TokenType, tokenize
from .utils import LineIndex, coerce_source, make_id

logger = logging.getLogger(__name__)

MIN_SINGLE_LINE_LENGTH = 100

_DECORATION = re.compile(r"^\s*\*+\s?")
_SEPARATOR = re.compile(r"^[=\-*_#~+]+$")
_PARAM = re.compile(r"^@param\s+(\w+)\s*(?::\s*(\w+))?\s*[-:]?\s*(.*)$", re.IGNORECASE)
_RETURNS = re.compile(r"^@returns?\s*[-:]?\s*(.*)$", re.IGNORECASE)
_AUTHOR = re.compile(r"^(?:@author|Author\s*:|Auth\s*:)\s*(.*)$", re.IGNORECASE)
_DATE = re.compile(r"^(?:@date|Date\s*:)\s*(.*)$", re.IGNORECASE)
_ISO_HISTORY = re.compile(
    r"^(\d{4})[-/](\d{2})[-/](\d{2})\s*[-:]?\s*(?:\((\w[\w .]*)\)|([A-Z]{2,4})\s*[-:])?\s*(.*)$"
)
_YEAR_HISTORY = re.compile(r"^((?:19|20)\d{2})\s*[-:]\s*(.+)$")
_WARNING = re.compile(r"\b(?:WARNING|DANGER|CAUTION)\b", re.IGNORECASE)
_NOTE = re.compile(r"^NOTE\s*[:!-]\s*(.*)$", re.IGNORECASE)
_OTHER_TAG = re.compile(r"^@\w+")
_SECTION_HEADER = re.compile(
    r"^(?:DESCRIPTION|HISTORY|REVISION(?:\s+HISTORY)?|CHANGES|CHANGE\s+LOG|PARAMETERS|INPUTS|OUTPUTS)\s*:?\s*$",
    re.IGNORECASE,
)
_POU_HEADER = re.compile(
    r"(FUNCTION_BLOCK|PROGRAM|FUNCTION)\s+"
    r"(?:(?:PUBLIC|PRIVATE|PROTECTED|INTERNAL|ABSTRACT|FINAL)\s+)*(\w+)",
    re.IGNORECASE,
)

# Quality points per populated field; sums to 100.
QUALITY_WEIGHTS = {
    "summary": 30,
    "description": 20,
    "params": 20,
    "history": 15,
    "warnings": 10,
    "author": 5,
}


def clean_comment(raw: str) -> List[str]:
    """
    Strip block-comment delimiters and per-line decoration.

    Args:
        raw: Full comment text including ``(*`` and ``*)``

    Returns:
        Content lines with decoration removed (empty lines kept)
    """
    text = raw
    text = re.sub(r"^\(\*+", "", text)
    text = re.sub(r"\*+\)$", "", text)
    return [_DECORATION.sub("", line).strip() for line in text.splitlines()]


def is_substantial(raw: str) -> bool:
    """A comment counts as a docstring if it spans lines or is long enough."""
    if "\n" in raw.strip():
        return True
    content = " ".join(line for line in clean_comment(raw) if line)
    return len(content) >= MIN_SINGLE_LINE_LENGTH


class DocstringExtractor:
    """Parses substantial block comments of one source file into Docstrings."""

    def __init__(self, file_path: str = "<source>"):
        self.file_path = file_path

    def extract(self, source, tokens: Optional[List[Token]] = None) -> List[Docstring]:
        """
        Extract docstrings in source order.

        Args:
            source: ST source text
            tokens: Tokens of ``source`` when the caller already has them

        Returns:
            List of Docstring objects
        """
        text = coerce_source(source)
        if not text.strip():
            return []
        if tokens is None:
            tokens = tokenize(text)
        index = LineIndex(text)

        docstrings = []
        for token in tokens:
            if not token.is_block_comment or not is_substantial(token.value):
                continue
            docstring = self._parse_comment(token)
            docstring.associated_block = self._associated_block(text, token.end)
            docstring.quality_score = quality_score(docstring)
            docstrings.append(docstring)

        logger.debug(f"{self.file_path}: {len(docstrings)} docstrings "
                     f"from {index.line_count} lines")
        return docstrings

    def _parse_comment(self, token: Token) -> Docstring:
        doc = Docstring(
            id=make_id("doc", self.file_path, token.line, token.column),
            location=SourceLocation(self.file_path, token.line, token.column,
                                    token.end_line, token.end_column),
            raw=token.value,
        )
        description: List[str] = []

        for line in clean_comment(token.value):
            if not line or _SEPARATOR.match(line) or _SECTION_HEADER.match(line):
                continue

            param = _PARAM.match(line)
            if param:
                doc.params.append(DocParam(param.group(1), param.group(3).strip(), param.group(2)))
                continue
            returns = _RETURNS.match(line)
            if returns:
                doc.returns = returns.group(1).strip()
                continue
            author = _AUTHOR.match(line)
            if author:
                doc.author = author.group(1).strip()
                continue
            date = _DATE.match(line)
            if date:
                doc.date = date.group(1).strip()
                continue
            history = self._history_entry(line)
            if history:
                doc.history.append(history)
                continue
            if _WARNING.search(line):
                doc.warnings.append(line)
                continue
            note = _NOTE.match(line)
            if note:
                doc.notes.append(note.group(1).strip())
                continue
            if _OTHER_TAG.match(line):
                continue

            if doc.summary is None:
                doc.summary = line
            else:
                description.append(line)

        doc.description = " ".join(description)
        return doc

    def _history_entry(self, line: str) -> Optional[HistoryEntry]:
        iso = _ISO_HISTORY.match(line)
        if iso:
            year, month, day = iso.group(1), iso.group(2), iso.group(3)
            return HistoryEntry(
                description=iso.group(6).strip(),
                date=f"{year}-{month}-{day}",
                year=int(year),
                author=iso.group(4) or iso.group(5),
            )
        bare = _YEAR_HISTORY.match(line)
        if bare:
            return HistoryEntry(description=bare.group(2).strip(), year=int(bare.group(1)))
        return None

    def _associated_block(self, text: str, comment_end: int) -> Optional[str]:
        """Name of the POU whose header follows the comment, skipping only whitespace."""
        match = _POU_HEADER.match(text, self._skip_whitespace(text, comment_end))
        return match.group(2) if match else None

    @staticmethod
    def _skip_whitespace(text: str, pos: int) -> int:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        return pos


def quality_score(doc: Docstring) -> int:
    """Score 0-100 for how complete a docstring is."""
    score = 0
    if doc.summary:
        score += QUALITY_WEIGHTS["summary"]
    if doc.description:
        score += QUALITY_WEIGHTS["description"]
    if doc.params:
        score += QUALITY_WEIGHTS["params"]
    if doc.history:
        score += QUALITY_WEIGHTS["history"]
    if doc.warnings:
        score += QUALITY_WEIGHTS["warnings"]
    if doc.author:
        score += QUALITY_WEIGHTS["author"]
    return score


def extract_docstrings(source, file_path: str = "<source>",
                       tokens: Optional[List[Token]] = None) -> List[Docstring]:
    """Extract substantial block-comment docstrings from ST source."""
    return DocstringExtractor(file_path).extract(source, tokens)
