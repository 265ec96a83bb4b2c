"""
Tribal knowledge extraction.

Finds the informal knowledge that only lives in comments: warnings, "do not
change" notes, workarounds, TODOs, equipment quirks, unexplained constants
and change history. Comment text is scanned; magic numbers are looked for in
code lines that carry no comment.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .models import POU, SEVERITY_RANK, Severity, SourceLocation, TribalKnowledgeItem, TribalKnowledgeType
from .tokenizer import TokenType, mask_non_code, tokenize
from .utils import LineIndex, coerce_source, context_lines, find_enclosing, make_id

logger = logging.getLogger(__name__)

CONTEXT_RADIUS = 3
DEDUP_PREFIX_LENGTH = 50

COMMON_VALUES = {0.0, 1.0, 2.0, 10.0, 100.0, 1000.0}
SELF_DOCUMENTING_WORDS = ("max", "min", "count", "limit", "timeout", "delay", "default", "init")

_TAIL = r"\s*[:\-!]?\s*([^\n]*)"


@dataclass(frozen=True)
class KnowledgePattern:
    regex: "re.Pattern"
    type: TribalKnowledgeType
    importance: Severity


def _patterns(entries) -> List[KnowledgePattern]:
    return [KnowledgePattern(re.compile(p, re.IGNORECASE), t, i) for p, t, i in entries]


T = TribalKnowledgeType

KNOWLEDGE_PATTERNS = _patterns([
    (rf"\bDANGER\b{_TAIL}", T.DANGER, Severity.CRITICAL),
    (rf"\bWARNING\b{_TAIL}", T.WARNING, Severity.HIGH),
    (rf"\bCAUTION\b{_TAIL}", T.CAUTION, Severity.HIGH),
    (r"\bDO\s+NOT\s+(?:CHANGE|MODIFY|REMOVE|DELETE|TOUCH)\b[^*\n]*", T.DO_NOT_CHANGE, Severity.CRITICAL),
    (r"\bDON'?T\s+(?:CHANGE|MODIFY|REMOVE|DELETE|TOUCH)\b[^*\n]*", T.DO_NOT_CHANGE, Severity.CRITICAL),
    (r"\bNEVER\s+(?:CHANGE|MODIFY|REMOVE|DELETE)\b[^*\n]*", T.DO_NOT_CHANGE, Severity.CRITICAL),
    (rf"\bWORKAROUND\b{_TAIL}", T.WORKAROUND, Severity.HIGH),
    (rf"\b(?:HACK|KLUDGE|BODGE)\b{_TAIL}", T.HACK, Severity.HIGH),
    (rf"\bNOTE\b{_TAIL}", T.NOTE, Severity.MEDIUM),
    (rf"\bIMPORTANT\b{_TAIL}", T.IMPORTANT, Severity.HIGH),
    (rf"\bTODO\b{_TAIL}", T.TODO, Severity.MEDIUM),
    (rf"\b(?:FIXME|BUG|XXX)\b{_TAIL}", T.FIXME, Severity.HIGH),
    (r"\b(?:EQUIPMENT|MACHINE|VENDOR)\s*[:!]\s*([^\n]*)", T.EQUIPMENT, Severity.MEDIUM),
    (rf"\bMAGIC(?:\s+NUMBER)?\b{_TAIL}", T.MAGIC_NUMBER, Severity.MEDIUM),
    (r"\bWHY\s+\d+(?:\.\d+)?\s*\?", T.MAGIC_NUMBER, Severity.MEDIUM),
    (rf"\bMYSTERY\b{_TAIL}", T.MYSTERY, Severity.MEDIUM),
    (r"\bUNKNOWN\s*[:!]\s*([^\n]*)", T.MYSTERY, Severity.MEDIUM),
    (r"\bNOT\s+SURE\s+WHY\b[^*\n]*", T.MYSTERY, Severity.MEDIUM),
    (r"\bDON'?T\s+KNOW\s+WHY\b[^*\n]*", T.MYSTERY, Severity.MEDIUM),
    (r"\b\d{4}[-/]\d{2}[-/]\d{2}\b\s*[-:]?[^\n]*", T.HISTORY, Severity.LOW),
    (r"\b(?:Auth(?:or)?|Written\s+by)\s*[:\-]\s*\w+(?:[ \t]+\w+)?", T.AUTHOR, Severity.LOW),
])

_MAGIC_ASSIGNMENT = re.compile(r"\b([^\W\d]\w*)\s*:=\s*(\d+(?:\.\d+)?)\s*;")
_COMMENT_CLOSE = re.compile(r"\s*\*+\)\s*$")


def is_common_value(value: float) -> bool:
    return value in COMMON_VALUES


def is_self_documenting(name: str, value: float) -> bool:
    """Names like nMaxRetries or tDelay500 explain their constant."""
    lower = name.lower()
    if str(int(value)) in lower:
        return True
    return any(word in lower for word in SELF_DOCUMENTING_WORDS)


def _declaration_spans(tokens) -> List[Tuple[int, int]]:
    """Offset ranges of VAR...END_VAR and TYPE...END_TYPE blocks."""
    spans = []
    start = None
    for token in tokens:
        if token.type != TokenType.KEYWORD:
            continue
        if start is None and (token.upper == "TYPE" or token.upper.startswith("VAR")):
            start = token.start
        elif start is not None and token.upper in ("END_VAR", "END_TYPE"):
            spans.append((start, token.end))
            start = None
    return spans


class TribalKnowledgeExtractor:
    """Collects tribal knowledge items from one source file."""

    def __init__(self, file_path: str, pous: Optional[Sequence[POU]] = None,
                 context_radius: int = CONTEXT_RADIUS):
        self.file_path = file_path
        self.pous = list(pous or [])
        self.context_radius = context_radius

    def extract(self, source) -> List[TribalKnowledgeItem]:
        """
        Extract tribal knowledge items.

        Returns:
            Items ordered by importance (critical first), then by line
        """
        text = coerce_source(source)
        if not text.strip():
            return []
        tokens = tokenize(text)
        index = LineIndex(text)
        lines = text.split("\n")
        seen = set()
        items: List[TribalKnowledgeItem] = []

        comments = [t for t in tokens if t.type == TokenType.COMMENT]
        for pattern in KNOWLEDGE_PATTERNS:
            for comment in comments:
                for match in pattern.regex.finditer(comment.value):
                    content = self._clean(match.group(0))
                    if not content:
                        continue
                    key = f"{pattern.type.value}:{content.lower()[:DEDUP_PREFIX_LENGTH]}"
                    if key in seen:
                        continue
                    seen.add(key)
                    offset = comment.start + match.start()
                    items.append(self._item(pattern.type, pattern.importance, content, offset, index, lines))

        for item in self._magic_numbers(text, tokens, index, lines):
            key = f"{item.type.value}:{item.content.lower()[:DEDUP_PREFIX_LENGTH]}"
            if key not in seen:
                seen.add(key)
                items.append(item)

        items.sort(key=lambda i: (SEVERITY_RANK[i.importance], i.location.line, i.location.column))
        logger.debug(f"{self.file_path}: {len(items)} tribal knowledge items")
        return items

    @staticmethod
    def _clean(content: str) -> str:
        return _COMMENT_CLOSE.sub("", content).strip()

    def _item(self, item_type: TribalKnowledgeType, importance: Severity, content: str,
              offset: int, index: LineIndex, lines: List[str]) -> TribalKnowledgeItem:
        line, column = index.position(offset)
        pou = find_enclosing(self.pous, line)
        return TribalKnowledgeItem(
            id=make_id("tk", self.file_path, item_type.value, line, column),
            type=item_type,
            importance=importance,
            content=content,
            location=SourceLocation(self.file_path, line, column),
            context=context_lines(lines, line, self.context_radius),
            pou_id=pou.id if pou else None,
        )

    def _magic_numbers(self, text: str, tokens, index: LineIndex,
                       lines: List[str]) -> List[TribalKnowledgeItem]:
        commented_lines = set()
        for token in tokens:
            if token.type == TokenType.COMMENT:
                commented_lines.update(range(token.line, token.end_line + 1))

        declarations = _declaration_spans(tokens)
        found = []
        code = mask_non_code(text, tokens)
        for match in _MAGIC_ASSIGNMENT.finditer(code):
            name, literal = match.group(1), match.group(2)
            value = float(literal)
            line = index.line_of(match.start())
            if is_common_value(value) or line in commented_lines:
                continue
            if any(start <= match.start() < end for start, end in declarations):
                # initializer such as 'nLimit : INT := 42;'
                continue
            if is_self_documenting(name, value):
                continue
            found.append(self._item(
                TribalKnowledgeType.MAGIC_NUMBER, Severity.MEDIUM,
                f"{name} := {literal} (unexplained constant)",
                match.start(), index, lines,
            ))
        return found


def extract_tribal_knowledge(source, file_path: str,
                             pous: Optional[Sequence[POU]] = None) -> List[TribalKnowledgeItem]:
    """Extract tribal knowledge items from ST source text."""
    return TribalKnowledgeExtractor(file_path, pous).extract(source)
