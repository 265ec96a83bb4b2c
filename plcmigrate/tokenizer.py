"""
IEC 61131-3 Structured Text tokenizer.

Turns raw ST source into a flat list of tokens. Comments and pragmas are kept
as tokens so later stages can read documentation. Malformed input never
raises: it produces ERROR tokens and scanning goes on.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .utils import blank_spans, coerce_source

logger = logging.getLogger(__name__)


class TokenType(Enum):
    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    INTEGER = "integer"
    REAL = "real"
    STRING = "string"
    WSTRING = "wstring"
    TIME = "time"
    DATE = "date"
    DIRECT_ADDRESS = "direct_address"
    COMMENT = "comment"
    PRAGMA = "pragma"
    OPERATOR = "operator"
    ERROR = "error"
    EOF = "eof"


KEYWORDS = frozenset([
    # POUs
    "PROGRAM", "END_PROGRAM", "FUNCTION_BLOCK", "END_FUNCTION_BLOCK",
    "FUNCTION", "END_FUNCTION", "METHOD", "END_METHOD", "PROPERTY",
    "END_PROPERTY", "ACTION", "END_ACTION", "INTERFACE", "END_INTERFACE",
    "CLASS", "END_CLASS",
    # Variable sections
    "VAR", "VAR_INPUT", "VAR_OUTPUT", "VAR_IN_OUT", "VAR_GLOBAL", "VAR_TEMP",
    "VAR_EXTERNAL", "VAR_STAT", "VAR_INST", "END_VAR",
    "CONSTANT", "RETAIN", "PERSISTENT",
    # Control flow
    "IF", "THEN", "ELSIF", "ELSE", "END_IF", "CASE", "OF", "END_CASE",
    "FOR", "TO", "BY", "DO", "END_FOR", "WHILE", "END_WHILE", "REPEAT",
    "UNTIL", "END_REPEAT", "RETURN", "EXIT", "CONTINUE",
    # Types
    "TYPE", "END_TYPE", "STRUCT", "END_STRUCT", "ARRAY", "AT",
    "EXTENDS", "IMPLEMENTS",
    # Operators and literals
    "AND", "OR", "XOR", "NOT", "MOD", "TRUE", "FALSE",
])

# Longest first so that ':=' wins over ':' and '**' over '*'.
OPERATORS = [
    ":=", "=>", "..", "**", "<>", "<=", ">=",
    ":", ";", ",", ".", "(", ")", "[", "]", "#", "^", "&",
    "+", "-", "*", "/", "=", "<", ">",
]

_TYPED_LITERAL = re.compile(
    r"(?P<prefix>LTIME|TIME|T|LT|DATE_AND_TIME|DT|DATE|D|TIME_OF_DAY|TOD)#"
    r"(?P<body>[-+]?[\w.:\-]+)",
    re.IGNORECASE,
)
_BASED_INT = re.compile(r"(?:2|8|16)#[0-9A-Fa-f_]+")
_NUMBER = re.compile(r"[0-9][0-9_]*(?P<frac>\.[0-9][0-9_]*)?(?P<exp>[eE][-+]?[0-9]+)?")
_IDENT = re.compile(r"[^\W\d]\w*")
_DIRECT_ADDRESS = re.compile(r"%[IQM](?:[XBWDL]?\d+(?:\.\d+)*|\*)", re.IGNORECASE)

_TIME_PREFIXES = {"T", "TIME", "LT", "LTIME"}


@dataclass(frozen=True)
class Token:
    """A lexical token with 1-based positions and absolute offsets."""
    type: TokenType
    value: str
    line: int
    column: int
    end_line: int
    end_column: int
    start: int
    end: int
    error: Optional[str] = None

    def is_keyword(self, *names: str) -> bool:
        return self.type == TokenType.KEYWORD and self.value.upper() in names

    @property
    def upper(self) -> str:
        return self.value.upper()

    @property
    def is_block_comment(self) -> bool:
        return self.type == TokenType.COMMENT and self.value.startswith("(*")


class STTokenizer:
    """Single-pass scanner over ST source text."""

    def __init__(self, source):
        self.source = coerce_source(source)
        self.pos = 0
        self.line = 1
        self.column = 1
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        """
        Scan the whole source.

        Returns:
            List of tokens ending in exactly one EOF token
        """
        self.pos, self.line, self.column = 0, 1, 1
        self.tokens = []
        src = self.source
        while self.pos < len(src):
            ch = src[self.pos]
            if ch in " \t\r\n\f\v":
                self._advance(1)
            elif src.startswith("(*", self.pos):
                self._block_comment()
            elif src.startswith("//", self.pos):
                end = src.find("\n", self.pos)
                end = len(src) if end == -1 else end
                self._emit(TokenType.COMMENT, end - self.pos)
            elif ch == "{":
                self._pragma()
            elif ch in "'\"":
                self._string(ch)
            elif ch == "%":
                self._direct_address()
            elif ch.isdigit():
                self._number()
            elif ch.isalpha() or ch == "_":
                self._word()
            else:
                self._operator()
        self.tokens.append(Token(TokenType.EOF, "", self.line, self.column,
                                 self.line, self.column, self.pos, self.pos))
        errors = sum(1 for t in self.tokens if t.type == TokenType.ERROR)
        if errors:
            logger.debug(f"Tokenizer produced {errors} error token(s)")
        return self.tokens

    def _advance(self, count: int):
        for ch in self.source[self.pos:self.pos + count]:
            if ch == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        self.pos += count

    def _emit(self, token_type: TokenType, length: int, value: Optional[str] = None,
              error: Optional[str] = None) -> Token:
        start, line, column = self.pos, self.line, self.column
        text = self.source[start:start + length]
        self._advance(length)
        token = Token(token_type, text if value is None else value, line, column,
                      self.line, max(self.column - 1, 1), start, self.pos, error)
        self.tokens.append(token)
        return token

    def _error_to_line_end(self, message: str):
        """Emit an ERROR token for the rest of the current line."""
        end = self.source.find("\n", self.pos)
        end = len(self.source) if end == -1 else end
        self._emit(TokenType.ERROR, max(end - self.pos, 1), error=message)

    def _block_comment(self):
        """Scan a (possibly nested) block comment, including banner forms."""
        src = self.source
        depth = 0
        i = self.pos
        while i < len(src):
            if src.startswith("(*", i):
                depth += 1
                i += 2
            elif src.startswith("*)", i):
                depth -= 1
                i += 2
                if depth == 0:
                    self._emit(TokenType.COMMENT, i - self.pos)
                    return
            else:
                i += 1
        self._error_to_line_end("unterminated block comment")

    def _pragma(self):
        end = self.source.find("}", self.pos)
        newline = self.source.find("\n", self.pos)
        if end == -1 or (newline != -1 and newline < end):
            self._error_to_line_end("unterminated pragma")
            return
        self._emit(TokenType.PRAGMA, end + 1 - self.pos)

    def _string(self, quote: str):
        src = self.source
        i = self.pos + 1
        while i < len(src):
            ch = src[i]
            if ch == "$" and i + 1 < len(src):
                i += 2
                continue
            if ch == quote:
                if i + 1 < len(src) and src[i + 1] == quote:
                    i += 2
                    continue
                token_type = TokenType.STRING if quote == "'" else TokenType.WSTRING
                self._emit(token_type, i + 1 - self.pos)
                return
            if ch == "\n":
                break
            i += 1
        self._error_to_line_end("unterminated string literal")

    def _direct_address(self):
        match = _DIRECT_ADDRESS.match(self.source, self.pos)
        if match:
            self._emit(TokenType.DIRECT_ADDRESS, match.end() - self.pos)
        else:
            self._emit(TokenType.ERROR, 1, error="unexpected character '%'")

    def _number(self):
        based = _BASED_INT.match(self.source, self.pos)
        if based:
            self._emit(TokenType.INTEGER, based.end() - self.pos)
            return
        match = _NUMBER.match(self.source, self.pos)
        if match is None:
            # non-ASCII digit such as '²'
            self._operator()
            return
        # '1..5' is a range, not the real '1.'
        if match.group("frac") is None and match.group("exp") is None:
            self._emit(TokenType.INTEGER, match.end() - self.pos)
        else:
            self._emit(TokenType.REAL, match.end() - self.pos)

    def _word(self):
        typed = _TYPED_LITERAL.match(self.source, self.pos)
        if typed:
            prefix = typed.group("prefix").upper()
            token_type = TokenType.TIME if prefix in _TIME_PREFIXES else TokenType.DATE
            self._emit(token_type, typed.end() - self.pos)
            return
        match = _IDENT.match(self.source, self.pos)
        if match is None:
            self._operator()
            return
        word = match.group(0)
        if word.upper() in KEYWORDS:
            self._emit(TokenType.KEYWORD, len(word))
        else:
            self._emit(TokenType.IDENTIFIER, len(word))

    def _operator(self):
        for op in OPERATORS:
            if self.source.startswith(op, self.pos):
                self._emit(TokenType.OPERATOR, len(op))
                return
        ch = self.source[self.pos]
        self._emit(TokenType.ERROR, 1, error=f"unexpected character {ch!r}")


def tokenize(source) -> List[Token]:
    """Tokenize ST source text; never raises."""
    return STTokenizer(source).tokenize()


def comment_text(token: Token) -> str:
    """Strip comment delimiters from a COMMENT token's value."""
    value = token.value
    if value.startswith("//"):
        return value[2:].strip()
    if value.startswith("(*"):
        return value[2:-2].strip() if value.endswith("*)") else value[2:].strip()
    return value.strip()


def mask_non_code(source, tokens: Optional[List[Token]] = None) -> str:
    """
    Blank out comments, string literals and pragmas, keeping offsets and lines.

    Pattern scans over the result only see identifiers and operators, so a
    word inside a comment is never mistaken for a variable.
    """
    text = coerce_source(source)
    if tokens is None:
        tokens = tokenize(text)
    spans = [
        (t.start, t.end) for t in tokens
        if t.type in (TokenType.COMMENT, TokenType.STRING, TokenType.WSTRING, TokenType.PRAGMA)
        or (t.type == TokenType.ERROR and t.end - t.start > 1)
    ]
    return blank_spans(text, spans)
