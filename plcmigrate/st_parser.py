"""
Structured Text parser.

Builds POUs (PROGRAM, FUNCTION_BLOCK, FUNCTION) with their variable
declarations, methods and body bounds from the token stream. Syntax
problems are recorded as ParseIssues and parsing continues with the next
POU or section, so a broken block never hides the ones after it.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from .config import AnalysisConfig
from .docstring_extractor import extract_docstrings
from .models import (
    POU, ArrayBounds, Docstring, IssueSeverity, Method, ParseIssue,
    ParseMetadata, ParseResult, POUKind, SourceLocation, Variable, VarSection
)
from .tokenizer import Token, TokenType, comment_text, tokenize
from .utils import coerce_source, make_id
from .variable_extractor import build_variable, parse_array_bounds

logger = logging.getLogger(__name__)

POU_KEYWORDS: Dict[str, Tuple[POUKind, str]] = {
    "PROGRAM": (POUKind.PROGRAM, "END_PROGRAM"),
    "FUNCTION_BLOCK": (POUKind.FUNCTION_BLOCK, "END_FUNCTION_BLOCK"),
    "FUNCTION": (POUKind.FUNCTION, "END_FUNCTION"),
}

# Top-level blocks that are not POUs and are skipped wholesale.
SKIPPED_BLOCKS = {
    "CLASS": "END_CLASS",
    "INTERFACE": "END_INTERFACE",
}

# Blocks nested inside a POU that are skipped.
NESTED_SKIPPED = {
    "PROPERTY": "END_PROPERTY",
    "ACTION": "END_ACTION",
}

VAR_SECTIONS = {section.value: section for section in VarSection}
SECTION_MODIFIERS = {"CONSTANT", "RETAIN", "PERSISTENT"}
ACCESS_MODIFIERS = {"PUBLIC", "PRIVATE", "PROTECTED", "INTERNAL", "ABSTRACT", "FINAL"}
END_POU_KEYWORDS = {end for _, end in POU_KEYWORDS.values()}

# Keywords that end a declaration or section early when a terminator is missing.
STRUCTURAL_KEYWORDS = (
    set(POU_KEYWORDS) | set(SKIPPED_BLOCKS) | set(VAR_SECTIONS) | END_POU_KEYWORDS
    | {"METHOD", "END_METHOD", "TYPE", "END_VAR"} | set(NESTED_SKIPPED)
)

PARAMETER_SECTIONS = {VarSection.VAR_INPUT, VarSection.VAR_OUTPUT, VarSection.VAR_IN_OUT}

VENDOR_MARKERS = [
    ("beckhoff", re.compile(r"TcPlcObject|TwinCAT|\bTc[23]_\w+", re.IGNORECASE)),
    ("codesys", re.compile(r"CODESYS|\{attribute\s+'|\{library\b", re.IGNORECASE)),
    ("siemens", re.compile(r"\bORGANIZATION_BLOCK\b|\bDATA_BLOCK\b|S7_Optimized_Access|\bTIA\s+Portal\b",
                           re.IGNORECASE)),
    ("rockwell", re.compile(r"\bRSLogix\b|\bStudio\s*5000\b|\bRockwell\b", re.IGNORECASE)),
    ("schneider", re.compile(r"\bUnity\s+Pro\b|\bEcoStruxure\b|\bSchneider\b", re.IGNORECASE)),
]

_WORDLIKE = {TokenType.IDENTIFIER, TokenType.KEYWORD, TokenType.INTEGER, TokenType.REAL}


def detect_vendor(source: str) -> Optional[str]:
    for vendor, marker in VENDOR_MARKERS:
        if marker.search(source):
            return vendor
    return None


def join_tokens(tokens: List[Token]) -> str:
    """Rebuild source-like text from tokens, spacing only between words."""
    parts: List[str] = []
    previous: Optional[Token] = None
    for token in tokens:
        if previous is not None and previous.type in _WORDLIKE and token.type in _WORDLIKE:
            parts.append(" ")
        parts.append(token.value)
        previous = token
    return "".join(parts)


class STParser:
    """Recursive-descent parser over the significant tokens of one file."""

    def __init__(self, file_path: str = "<source>", config: Optional[AnalysisConfig] = None):
        """
        Initialize the parser.

        Args:
            file_path: File name recorded in every location
            config: Optional analysis configuration (safety I/O channels)
        """
        self.file_path = file_path
        self.config = config
        self._reset()

    def _reset(self):
        self.tokens: List[Token] = []
        self.pos = 0
        self.comments_by_line: Dict[int, List[Token]] = {}
        self.pragmas: List[Token] = []
        self.errors: List[ParseIssue] = []
        self.warnings: List[ParseIssue] = []

    def parse(self, source) -> ParseResult:
        """
        Parse ST source into POUs.

        Args:
            source: ST source text

        Returns:
            ParseResult with POUs, errors, warnings and file metadata
        """
        text = coerce_source(source)
        self._reset()
        all_tokens = tokenize(text)

        for token in all_tokens:
            if token.type == TokenType.COMMENT:
                self.comments_by_line.setdefault(token.line, []).append(token)
            elif token.type == TokenType.PRAGMA:
                self.pragmas.append(token)
            elif token.type == TokenType.ERROR:
                self._warning("LEXICAL_ERROR", token.error or "invalid token", token)
            else:
                self.tokens.append(token)

        docstrings = extract_docstrings(text, self.file_path, all_tokens) if text.strip() else []
        result = ParseResult(
            file_path=self.file_path,
            docstrings=docstrings,
            metadata=ParseMetadata(
                file=self.file_path,
                total_lines=text.count("\n") + 1 if text else 0,
                vendor=detect_vendor(text),
            ),
        )

        while not self._at_end():
            token = self._peek()
            if token.type == TokenType.KEYWORD and token.upper in POU_KEYWORDS:
                pou = self._parse_pou(docstrings)
                if pou is not None:
                    result.pous.append(pou)
            elif token.type == TokenType.KEYWORD and token.upper in SKIPPED_BLOCKS:
                self._advance()
                self._skip_block(SKIPPED_BLOCKS[token.upper], token)
            elif token.is_keyword("TYPE"):
                result.user_types.extend(self._parse_type_block())
            elif token.type == TokenType.KEYWORD and token.upper in VAR_SECTIONS:
                variables = self._parse_var_section(None, "")
                if token.upper == VarSection.VAR_GLOBAL.value:
                    result.global_variables.extend(variables)
                else:
                    self._warning("ORPHAN_VAR_SECTION",
                                  f"{token.upper} section outside of any POU ignored", token)
            else:
                self._advance()

        result.errors = self.errors
        result.warnings = self.warnings
        logger.info(f"Parsed {self.file_path}: {len(result.pous)} POUs, "
                    f"{len(self.errors)} errors, {len(self.warnings)} warnings")
        return result

    # Token helpers

    def _peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def _advance(self) -> Token:
        token = self._peek()
        if token.type != TokenType.EOF:
            self.pos += 1
        return token

    def _previous(self) -> Optional[Token]:
        return self.tokens[self.pos - 1] if self.pos > 0 else None

    def _at_end(self) -> bool:
        return self._peek().type == TokenType.EOF

    def _is_op(self, value: str, offset: int = 0) -> bool:
        token = self._peek(offset)
        return token.type == TokenType.OPERATOR and token.value == value

    def _is_structural(self, token: Token) -> bool:
        return token.type == TokenType.EOF or (
            token.type == TokenType.KEYWORD and token.upper in STRUCTURAL_KEYWORDS
        )

    def _error(self, code: str, message: str, token: Token):
        self.errors.append(ParseIssue(code, message, token.line, token.column, IssueSeverity.ERROR))

    def _warning(self, code: str, message: str, token: Token):
        self.warnings.append(ParseIssue(code, message, token.line, token.column, IssueSeverity.WARNING))

    # POUs

    def _parse_pou(self, docstrings: List[Docstring]) -> Optional[POU]:
        header = self._advance()
        kind, end_keyword = POU_KEYWORDS[header.upper]
        attributes: Dict[str, object] = {}

        pragmas = self._pragmas_before(header)
        if pragmas:
            attributes["pragmas"] = [p.value for p in pragmas]

        modifiers = []
        while (self._peek().type == TokenType.IDENTIFIER and self._peek().upper in ACCESS_MODIFIERS
               and self._peek(1).type == TokenType.IDENTIFIER):
            modifiers.append(self._advance().upper)
        if modifiers:
            attributes["modifiers"] = modifiers

        name_token = self._peek()
        if name_token.type != TokenType.IDENTIFIER:
            self._error("MISSING_POU_NAME", f"Expected {kind.value} name after {header.value}", header)
            self._recover_to(end_keyword)
            return None
        self._advance()
        name = name_token.value

        return_type = None
        if self._is_op(":"):
            colon = self._advance()
            return_type = self._collect_type(colon.line) or None

        extends = None
        implements: List[str] = []
        if self._peek().is_keyword("EXTENDS"):
            self._advance()
            extends = self._qualified_name()
            if extends is None:
                self._error("MISSING_EXTENDS_NAME", f"Expected base name after EXTENDS in {name}", name_token)
        if self._peek().is_keyword("IMPLEMENTS"):
            self._advance()
            while True:
                interface = self._qualified_name()
                if interface is None:
                    self._error("MISSING_INTERFACE_NAME",
                                f"Expected interface name after IMPLEMENTS in {name}", name_token)
                    break
                if interface not in implements:
                    implements.append(interface)
                if not self._is_op(","):
                    break
                self._advance()

        pou_id = make_id("pou", self.file_path, name, header.line)
        variables: List[Variable] = []
        methods: List[Method] = []
        body_start: Optional[int] = None
        end_line: int

        while True:
            token = self._peek()
            if token.type == TokenType.EOF:
                self._error("MISSING_END", f"Missing {end_keyword} for {name}", header)
                end_line = self._last_line()
                break
            if token.is_keyword(end_keyword):
                self._advance()
                end_line = token.line
                break
            if token.type == TokenType.KEYWORD and token.upper in END_POU_KEYWORDS:
                self._error("MISMATCHED_END", f"Expected {end_keyword} for {name}, found {token.value}", token)
                self._advance()
                end_line = token.line
                break
            if token.type == TokenType.KEYWORD and (token.upper in POU_KEYWORDS or token.upper in SKIPPED_BLOCKS
                                                    or token.upper == "TYPE"):
                self._error("MISSING_END", f"Missing {end_keyword} for {name} before {token.value}", token)
                previous = self._previous()
                end_line = previous.line if previous else token.line
                break
            if token.type == TokenType.KEYWORD and token.upper in VAR_SECTIONS:
                variables.extend(self._parse_var_section(pou_id, name))
                continue
            if token.is_keyword("METHOD"):
                method = self._parse_method(pou_id, name)
                if method is not None:
                    methods.append(method)
                continue
            if token.type == TokenType.KEYWORD and token.upper in NESTED_SKIPPED:
                self._advance()
                self._skip_block(NESTED_SKIPPED[token.upper], token)
                continue
            if body_start is None:
                body_start = token.line
            self._advance()

        location = SourceLocation(self.file_path, header.line, header.column, end_line)
        pou = POU(
            id=pou_id,
            qualified_name=name,
            kind=kind,
            name=name,
            location=location,
            body_start_line=body_start if body_start is not None else end_line,
            body_end_line=end_line,
            variables=variables,
            documentation=self._documentation_for(name, header.line, docstrings),
            extends=extends,
            implements=implements,
            methods=methods,
            return_type=return_type,
            vendor_attributes=attributes,
        )
        logger.debug(f"Parsed {kind.value} {name} ({len(variables)} variables, {len(methods)} methods)")
        return pou

    def _parse_method(self, pou_id: str, owner: str) -> Optional[Method]:
        header = self._advance()
        while self._peek().type == TokenType.IDENTIFIER and self._peek().upper in ACCESS_MODIFIERS \
                and self._peek(1).type == TokenType.IDENTIFIER:
            self._advance()
        name_token = self._peek()
        if name_token.type != TokenType.IDENTIFIER:
            self._error("MISSING_METHOD_NAME", f"Expected method name in {owner}", header)
            self._skip_block("END_METHOD", header)
            return None
        self._advance()

        return_type = None
        if self._is_op(":"):
            colon = self._advance()
            return_type = self._collect_type(colon.line) or None

        parameters: List[Variable] = []
        end_line = None
        while True:
            token = self._peek()
            if token.is_keyword("END_METHOD"):
                self._advance()
                end_line = token.line
                break
            if token.type == TokenType.EOF or (
                token.type == TokenType.KEYWORD
                and (token.upper in POU_KEYWORDS or token.upper in END_POU_KEYWORDS or token.upper == "METHOD")
            ):
                self._error("MISSING_END_METHOD", f"Missing END_METHOD for {owner}.{name_token.value}", token)
                previous = self._previous()
                end_line = previous.line if previous else token.line
                break
            if token.type == TokenType.KEYWORD and token.upper in VAR_SECTIONS:
                section_vars = self._parse_var_section(pou_id, f"{owner}.{name_token.value}")
                parameters.extend(v for v in section_vars if v.section in PARAMETER_SECTIONS)
                continue
            self._advance()

        return Method(
            id=make_id("method", self.file_path, owner, name_token.value, header.line),
            name=name_token.value,
            location=SourceLocation(self.file_path, header.line, header.column, end_line),
            return_type=return_type,
            parameters=parameters,
            end_line=end_line,
        )

    def _documentation_for(self, name: str, header_line: int,
                           docstrings: List[Docstring]) -> Optional[Docstring]:
        candidates = [
            d for d in docstrings
            if d.associated_block and d.associated_block.lower() == name.lower()
            and d.end_line <= header_line
        ]
        return max(candidates, key=lambda d: d.end_line) if candidates else None

    def _pragmas_before(self, header: Token) -> List[Token]:
        previous = self._previous_before(header)
        lower = previous.end if previous else 0
        return [p for p in self.pragmas if lower <= p.start and p.end <= header.start]

    def _previous_before(self, header: Token) -> Optional[Token]:
        index = self.pos - 2
        return self.tokens[index] if index >= 0 else None

    def _qualified_name(self) -> Optional[str]:
        if self._peek().type != TokenType.IDENTIFIER:
            return None
        parts = [self._advance().value]
        while self._is_op(".") and self._peek(1).type == TokenType.IDENTIFIER:
            self._advance()
            parts.append(self._advance().value)
        return ".".join(parts)

    def _last_line(self) -> int:
        return self.tokens[-1].line if self.tokens else 1

    # Recovery

    def _recover_to(self, end_keyword: str):
        """Skip a broken POU: stop after its end keyword or before the next POU."""
        while not self._at_end():
            token = self._peek()
            if token.is_keyword(end_keyword):
                self._advance()
                return
            if token.type == TokenType.KEYWORD and token.upper in POU_KEYWORDS:
                return
            self._advance()

    def _skip_block(self, end_keyword: str, opener: Token):
        while True:
            token = self._peek()
            if token.is_keyword(end_keyword):
                self._advance()
                return
            if token.type == TokenType.EOF or (
                token.type == TokenType.KEYWORD and token.upper in POU_KEYWORDS
            ):
                self._error("MISSING_END", f"Missing {end_keyword} for {opener.value}", opener)
                return
            self._advance()

    # Types

    def _parse_type_block(self) -> List[str]:
        opener = self._advance()
        names: List[str] = []
        struct_depth = 0
        expect_name = True
        while True:
            token = self._peek()
            if token.is_keyword("END_TYPE"):
                self._advance()
                break
            if token.type == TokenType.EOF or (token.type == TokenType.KEYWORD and token.upper in POU_KEYWORDS):
                self._error("MISSING_END", "Missing END_TYPE", opener)
                break
            if token.is_keyword("STRUCT"):
                struct_depth += 1
            elif token.is_keyword("END_STRUCT"):
                struct_depth -= 1
                expect_name = struct_depth == 0
            elif struct_depth == 0 and expect_name and token.type == TokenType.IDENTIFIER \
                    and self._is_op(":", 1):
                names.append(token.value)
                expect_name = False
            elif struct_depth == 0 and self._is_op(";"):
                expect_name = True
            self._advance()
        return names

    # Variables

    def _parse_var_section(self, pou_id: Optional[str], owner: str) -> List[Variable]:
        opener = self._advance()
        section = VAR_SECTIONS[opener.upper]
        modifiers = []
        while self._peek().type == TokenType.KEYWORD and self._peek().upper in SECTION_MODIFIERS:
            modifiers.append(self._advance().upper)

        variables: List[Variable] = []
        while True:
            token = self._peek()
            if token.is_keyword("END_VAR"):
                self._advance()
                break
            if self._is_structural(token):
                self._error("MISSING_END_VAR", f"Missing END_VAR for {opener.value} section", opener)
                break
            variables.extend(self._parse_declaration(section, modifiers, pou_id, owner))
        return variables

    def _parse_declaration(self, section: VarSection, modifiers: List[str],
                           pou_id: Optional[str], owner: str) -> List[Variable]:
        first = self._peek()
        if first.type != TokenType.IDENTIFIER:
            self._warning("UNEXPECTED_TOKEN", f"Unexpected '{first.value}' in {section.value} section", first)
            self._skip_declaration()
            return []

        names = [self._advance()]
        while self._is_op(",") and self._peek(1).type == TokenType.IDENTIFIER:
            self._advance()
            names.append(self._advance())

        address = None
        if self._peek().is_keyword("AT"):
            self._advance()
            if self._peek().type == TokenType.DIRECT_ADDRESS:
                address = self._advance().value
            else:
                self._warning("INVALID_ADDRESS", f"Expected direct address after AT for {names[0].value}",
                              self._peek())

        if not self._is_op(":"):
            self._warning("MISSING_COLON", f"Expected ':' after variable '{names[0].value}'", names[0])
            self._skip_declaration()
            return []
        colon = self._advance()

        bounds: Optional[ArrayBounds] = None
        type_line = colon.line
        if self._peek().is_keyword("ARRAY"):
            self._advance()
            bounds, type_line = self._parse_array_bounds(type_line)
            if self._peek().is_keyword("OF"):
                type_line = self._advance().line
        data_type = self._collect_type(type_line)
        if not data_type:
            self._warning("MISSING_TYPE", f"Missing data type for variable '{names[0].value}'", colon)

        initial_value = None
        if self._is_op(":="):
            self._advance()
            initial_value = self._collect_initial_value() or None

        last_line = self._previous().line
        if self._is_op(";"):
            last_line = self._advance().line
        else:
            self._warning("MISSING_SEMICOLON", f"Missing ';' after declaration of '{names[0].value}'", names[0])

        comment = self._inline_comment(names[0], last_line)
        return [
            build_variable(
                name=token.value,
                data_type=data_type,
                section=section,
                location=SourceLocation(self.file_path, token.line, token.column,
                                        token.end_line, token.end_column),
                pou_id=pou_id,
                owner=owner,
                initial_value=initial_value,
                comment=comment,
                array_bounds=bounds,
                io_address=address,
                modifiers=modifiers,
                config=self.config,
            )
            for token in names
        ]

    def _parse_array_bounds(self, line: int) -> Tuple[Optional[ArrayBounds], int]:
        if not self._is_op("["):
            return ArrayBounds(dimensions=[], raw=""), line
        self._advance()
        inner: List[Token] = []
        depth = 1
        while not self._at_end():
            token = self._peek()
            if token.type == TokenType.OPERATOR and token.value == "[":
                depth += 1
            elif token.type == TokenType.OPERATOR and token.value == "]":
                depth -= 1
                if depth == 0:
                    line = self._advance().line
                    break
            elif self._is_structural(token) or (token.type == TokenType.OPERATOR and token.value == ";"):
                self._warning("UNCLOSED_ARRAY_BOUNDS", "Missing ']' in array declaration", token)
                break
            inner.append(self._advance())
        return parse_array_bounds(join_tokens(inner)), line

    def _collect_type(self, line: int) -> str:
        """Collect type tokens up to ':=' or ';', staying on the declaration line."""
        collected: List[Token] = []
        depth = 0
        while True:
            token = self._peek()
            if self._is_structural(token):
                break
            if depth == 0 and token.type == TokenType.OPERATOR and token.value in (":=", ";"):
                break
            if depth == 0 and token.line != line and token.type != TokenType.OPERATOR:
                break
            if token.type == TokenType.OPERATOR and token.value in "([":
                depth += 1
            elif token.type == TokenType.OPERATOR and token.value in ")]":
                depth -= 1
            collected.append(self._advance())
            line = token.end_line
        return join_tokens(collected)

    def _collect_initial_value(self) -> str:
        collected: List[Token] = []
        depth = 0
        line = self._previous().line
        while True:
            token = self._peek()
            if self._is_structural(token):
                break
            if depth == 0 and token.type == TokenType.OPERATOR and token.value == ";":
                break
            if depth == 0 and token.line != line and collected:
                break
            if token.type == TokenType.OPERATOR and token.value in ("(", "["):
                depth += 1
            elif token.type == TokenType.OPERATOR and token.value in (")", "]"):
                depth = max(depth - 1, 0)
            collected.append(self._advance())
            line = token.end_line
        return join_tokens(collected)

    def _skip_declaration(self):
        while True:
            token = self._peek()
            if self._is_structural(token):
                return
            self._advance()
            if token.type == TokenType.OPERATOR and token.value == ";":
                return

    def _inline_comment(self, first: Token, last_line: int) -> Optional[str]:
        for line in range(first.line, last_line + 1):
            for comment in self.comments_by_line.get(line, []):
                if comment.start > first.start:
                    return comment_text(comment) or None
        return None


def parse(source, file_path: str = "<source>", config: Optional[AnalysisConfig] = None) -> ParseResult:
    """Parse ST source text; never raises on malformed input."""
    return STParser(file_path, config).parse(source)
