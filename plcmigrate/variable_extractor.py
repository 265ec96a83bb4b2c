"""
Variable extraction for Structured Text POUs.

Builds Variable records from parsed declarations: section classification,
I/O address decoding, array bounds and the derived safety-critical flag.
"""

import logging
import re
from typing import List, Optional, Sequence, Union

from .config import AnalysisConfig
from .models import (
    POU, ArrayBounds, ArrayDimension, IOMapping, SourceLocation, Variable, VarSection
)
from .safety_extractor import is_safety_name
from .utils import make_id

logger = logging.getLogger(__name__)

IO_ADDRESS_PATTERN = re.compile(r"^%([IQM])([XBWDL]?)(\d+(?:\.\d+)*|\*)$", re.IGNORECASE)

IO_AREAS = {
    "I": "input",
    "Q": "output",
    "M": "memory",
}

IO_SIZES = {
    "X": 1,
    "": 1,
    "B": 8,
    "W": 16,
    "D": 32,
    "L": 64,
}

_SIMPLE_BOUND = re.compile(r"^\s*(-?\d+)\s*$")
_RANGE_BOUND = re.compile(r"^\s*([^.]+?)\s*\.\.\s*(.+?)\s*$")


def decode_io_address(address: Optional[str], config: Optional[AnalysisConfig] = None) -> Optional[IOMapping]:
    """
    Decode an IEC direct address such as ``%IX0.1`` or ``%QW4``.

    Args:
        address: Raw address text including the leading ``%``
        config: Optional configuration naming safety I/O channels

    Returns:
        IOMapping, or None when the text is not a direct address
    """
    if not address:
        return None
    match = IO_ADDRESS_PATTERN.match(address.strip())
    if not match:
        return None
    area, size, index = match.group(1).upper(), match.group(2).upper(), match.group(3)
    return IOMapping(
        address=address.strip(),
        area=area,
        direction=IO_AREAS[area],
        size_bits=None if index == "*" else IO_SIZES[size],
        index=index,
        is_safety_channel=bool(config and config.is_safety_channel(address)),
    )


def parse_array_dimension(text: str) -> ArrayDimension:
    """Parse one ``l..u`` dimension; a bare ``n`` means ``0..n-1``."""
    simple = _SIMPLE_BOUND.match(text)
    if simple:
        return ArrayDimension(0, int(simple.group(1)) - 1)
    ranged = _RANGE_BOUND.match(text)
    if not ranged:
        return ArrayDimension(text.strip(), text.strip())
    lower, upper = ranged.group(1), ranged.group(2)
    return ArrayDimension(_bound_value(lower), _bound_value(upper))


def parse_array_bounds(text: str) -> ArrayBounds:
    """Parse the text between ``ARRAY[`` and ``]`` into ArrayBounds."""
    parts = [p for p in _split_top_level(text) if p.strip()]
    return ArrayBounds(dimensions=[parse_array_dimension(p) for p in parts], raw=text.strip())


def _bound_value(text: str) -> Union[int, str]:
    compact = text.replace(" ", "")
    if re.fullmatch(r"[-+]?\d+", compact):
        return int(compact)
    return compact


def _split_top_level(text: str) -> List[str]:
    parts, depth, current = [], 0, []
    for ch in text:
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


def build_variable(
    name: str,
    data_type: str,
    section: VarSection,
    location: SourceLocation,
    pou_id: Optional[str] = None,
    owner: str = "",
    initial_value: Optional[str] = None,
    comment: Optional[str] = None,
    array_bounds: Optional[ArrayBounds] = None,
    io_address: Optional[str] = None,
    modifiers: Optional[Sequence[str]] = None,
    config: Optional[AnalysisConfig] = None,
) -> Variable:
    """
    Create a Variable with its derived fields filled in.

    A variable is safety-critical when its name follows a safety naming
    pattern or when it is bound to a configured safety I/O channel.
    """
    io_mapping = decode_io_address(io_address, config)
    is_safety = is_safety_name(name) or bool(io_mapping and io_mapping.is_safety_channel)
    return Variable(
        id=make_id("var", location.file, owner, name, location.line, location.column),
        name=name,
        data_type=data_type,
        section=section,
        location=location,
        pou_id=pou_id,
        initial_value=initial_value,
        comment=comment,
        is_array=array_bounds is not None,
        array_bounds=array_bounds,
        is_safety_critical=is_safety,
        io_address=io_address,
        io_mapping=io_mapping,
        modifiers=list(modifiers or []),
    )


def extract_variables(
    source_or_pous: Union[str, bytes, Sequence[POU], None],
    file_path: str = "<source>",
    config: Optional[AnalysisConfig] = None,
    include_globals: bool = False,
) -> List[Variable]:
    """
    Extract every declared variable.

    Args:
        source_or_pous: ST source text, or POUs from an earlier parse
        file_path: File name recorded in locations when parsing text
        config: Optional configuration for safety channel detection
        include_globals: Also return VAR_GLOBAL declarations outside any POU

    Returns:
        Variables in declaration order, grouped by POU
    """
    if source_or_pous is None:
        return []
    if isinstance(source_or_pous, (str, bytes)):
        from .st_parser import parse

        result = parse(source_or_pous, file_path=file_path, config=config)
        variables = [v for pou in result.pous for v in pou.variables]
        if include_globals:
            variables.extend(result.global_variables)
        logger.debug(f"Extracted {len(variables)} variables from {file_path}")
        return variables
    return [v for pou in source_or_pous for v in pou.variables]


def io_variables(variables: Sequence[Variable]) -> List[Variable]:
    """Variables bound to a direct I/O address."""
    return [v for v in variables if v.io_mapping is not None]
