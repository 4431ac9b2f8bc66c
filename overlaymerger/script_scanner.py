"""Top-level block extraction for Lua script files.

Scripts are scanned line by line. Comments and string literals are blanked
out first so keyword and brace counting only sees code; blocks then extend
until their keyword depth (``function``/``if``/``do``/``repeat`` against
``end``/``until``) and brace depth are both balanced again.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List

from .text_utils import collapse_whitespace

OPENING_KEYWORD_PATTERN = re.compile(r"\b(function|if|do|repeat)\b")
CLOSING_KEYWORD_PATTERN = re.compile(r"\b(end|until)\b")

LOCAL_FUNCTION_PATTERN = re.compile(r"^\s*local\s+function\s+([A-Za-z_][\w.:]*)\s*\(")
FUNCTION_PATTERN = re.compile(r"^\s*function\s+([A-Za-z_][\w.:]*)\s*\(")
TABLE_PATTERN = re.compile(r"^\s*(local\s+)?([A-Za-z_][\w.]*)\s*=\s*\{")
EMPTY_TABLE_PATTERN = re.compile(r"=\s*\{\s*\}\s*[;,]?\s*$")
VARIABLE_PATTERN = re.compile(r"^\s*local\s+([A-Za-z_]\w*(?:\s*,\s*[A-Za-z_]\w*)*)\s*(=|$)")
MODULE_RETURN_PATTERN = re.compile(r"^\s*return\s+([A-Za-z_]\w*)\s*;?\s*$")
LONG_BRACKET_PATTERN = re.compile(r"\[(=*)\[")


class BlockKind(str, Enum):
    FUNCTION = "function"
    TABLE = "table"
    VARIABLE = "variable"
    STATEMENT = "statement"


@dataclass(slots=True)
class ScriptBlock:
    kind: BlockKind
    name: str
    lines: List[str]
    is_local: bool = False

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def normalized(self) -> str:
        return collapse_whitespace(self.text)


@dataclass(slots=True)
class ScriptLayout:
    """Named blocks of one script, each section in order of first appearance."""

    variables: Dict[str, ScriptBlock] = field(default_factory=dict)
    tables: Dict[str, ScriptBlock] = field(default_factory=dict)
    functions: Dict[str, ScriptBlock] = field(default_factory=dict)
    statements: Dict[str, ScriptBlock] = field(default_factory=dict)
    module_name: str | None = None

    def section(self, kind: BlockKind) -> Dict[str, ScriptBlock]:
        if kind == BlockKind.FUNCTION:
            return self.functions
        if kind == BlockKind.TABLE:
            return self.tables
        if kind == BlockKind.VARIABLE:
            return self.variables
        return self.statements


def strip_code(line: str, open_bracket: str | None = None) -> tuple[str, str | None]:
    """Blank out comments and string literals on one line.

    ``open_bracket`` is the closing delimiter (``]]``, ``]==]``, ...) of a long
    string or comment carried over from the previous line. Returns the
    remaining code and the delimiter still open at the end of the line, if any.
    """

    out: List[str] = []
    index = 0
    length = len(line)
    while index < length:
        if open_bracket is not None:
            close = line.find(open_bracket, index)
            if close < 0:
                return "".join(out), open_bracket
            index = close + len(open_bracket)
            open_bracket = None
            continue
        if line.startswith("--", index):
            opened = LONG_BRACKET_PATTERN.match(line, index + 2)
            if opened is None:
                break
            open_bracket = f"]{opened.group(1)}]"
            index = opened.end()
            continue
        opened = LONG_BRACKET_PATTERN.match(line, index)
        if opened is not None:
            out.append(" ")
            open_bracket = f"]{opened.group(1)}]"
            index = opened.end()
            continue
        char = line[index]
        if char in "'\"":
            index += 1
            while index < length and line[index] != char:
                if line[index] == "\\":
                    index += 1
                index += 1
            out.append(" ")
            index += 1
            continue
        out.append(char)
        index += 1
    return "".join(out), open_bracket


def keyword_delta(code: str) -> int:
    return len(OPENING_KEYWORD_PATTERN.findall(code)) - len(CLOSING_KEYWORD_PATTERN.findall(code))


def brace_delta(code: str) -> int:
    return code.count("{") - code.count("}")


def paren_delta(code: str) -> int:
    return code.count("(") - code.count(")")


def strip_lines(lines: List[str]) -> List[str]:
    codes: List[str] = []
    open_bracket: str | None = None
    for line in lines:
        code, open_bracket = strip_code(line, open_bracket)
        codes.append(code)
    return codes


class LineCursor:
    def __init__(self, lines: List[str]) -> None:
        self.lines = lines
        self.codes = strip_lines(lines)
        self.position = 0

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.lines)

    def peek(self) -> tuple[str, str]:
        return self.lines[self.position], self.codes[self.position]

    def advance(self) -> tuple[str, str]:
        current = self.peek()
        self.position += 1
        return current

    def skip_to(self, predicate: Callable[[str, str], bool]) -> List[str]:
        """Consume lines up to and including the first one satisfying ``predicate``."""

        taken: List[str] = []
        while not self.exhausted:
            line, code = self.advance()
            taken.append(line)
            if predicate(line, code):
                break
        return taken

    def take_balanced(self) -> tuple[List[str], bool]:
        """Consume one construct: lines until keyword, brace and paren depths return to zero.

        The second value is False when the input ended with the construct still open.
        """

        depth = {"keywords": 0, "braces": 0, "parens": 0}

        def closes(_line: str, code: str) -> bool:
            depth["keywords"] += keyword_delta(code)
            depth["braces"] += brace_delta(code)
            depth["parens"] += paren_delta(code)
            return all(value <= 0 for value in depth.values())

        taken = self.skip_to(closes)
        return taken, all(value <= 0 for value in depth.values())


class ScriptSyntaxError(ValueError):
    pass


def _classify(code: str) -> tuple[BlockKind, str, bool] | None:
    match = LOCAL_FUNCTION_PATTERN.match(code)
    if match:
        return BlockKind.FUNCTION, match.group(1), True
    match = FUNCTION_PATTERN.match(code)
    if match:
        return BlockKind.FUNCTION, match.group(1), False
    match = TABLE_PATTERN.match(code)
    if match and not EMPTY_TABLE_PATTERN.search(code):
        return BlockKind.TABLE, match.group(2), bool(match.group(1))
    match = VARIABLE_PATTERN.match(code)
    if match:
        names = re.sub(r"\s+", "", match.group(1))
        return BlockKind.VARIABLE, names, True
    return None


def scan_script(text: str) -> ScriptLayout:
    """Split a script into its top-level blocks.

    Raises :class:`ScriptSyntaxError` when a block is still open at the end
    of the input.
    """

    layout = ScriptLayout()
    cursor = LineCursor(text.replace("\r\n", "\n").replace("\r", "\n").split("\n"))
    while not cursor.exhausted:
        _line, code = cursor.peek()
        if not code.strip():
            cursor.advance()
            continue

        match = MODULE_RETURN_PATTERN.match(code)
        if match:
            layout.module_name = match.group(1)
            cursor.advance()
            continue

        start_line = cursor.position + 1
        classified = _classify(code)
        block_lines, balanced = cursor.take_balanced()
        if classified is None:
            kind, name, is_local = BlockKind.STATEMENT, "", False
        else:
            kind, name, is_local = classified
        if not balanced:
            raise ScriptSyntaxError(f"unterminated {kind.value} starting at line {start_line}")

        block = ScriptBlock(kind=kind, name=name, lines=block_lines, is_local=is_local)
        if kind == BlockKind.STATEMENT:
            block.name = block.normalized
        # a later definition of the same name replaces the earlier one in place
        layout.section(kind)[block.name] = block
    return layout


__all__ = [
    "BlockKind",
    "ScriptBlock",
    "ScriptLayout",
    "ScriptSyntaxError",
    "LineCursor",
    "strip_code",
    "keyword_delta",
    "strip_lines",
    "scan_script",
]
