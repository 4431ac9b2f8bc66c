"""Best-version merge of Lua scripts, block by block.

Contributors are folded left to right. A block only one side defines is kept,
blocks equal up to whitespace collapse to one, and differing blocks are
settled by :func:`choose_better`. For functions the losing version can still
donate the lines of a feature the winner lacks (see :func:`apply_patches`).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .logging_utils import log_debug
from .script_scanner import BlockKind, ScriptBlock, ScriptLayout, keyword_delta, scan_script, strip_lines

MERGED_HEADER = "-- Merged Lua file"
ARITHMETIC_CHARACTERS = frozenset("+-*/")
BRACKET_CHARACTERS = frozenset("()[]{}")
FUNCTION_END_PATTERN = re.compile(r"^end\s*$")


class PatchMode:
    REPLACE_LINE = "replace"
    SPLICE_BLOCK = "splice"


@dataclass(slots=True)
class ScoringRule:
    """A feature marker worth ``weight`` points to the block containing it.

    ``mode`` tells the patch step how a donor block carries the feature over:
    ``replace`` swaps the first base line matching ``anchor`` for the donor's
    marker line, ``splice`` copies the donor's construct starting at the line
    matching ``patch_pattern`` in front of the base's closing ``end``. Rules
    without a mode only score.
    """

    name: str
    pattern: re.Pattern
    weight: int
    mode: str | None = None
    anchor: re.Pattern | None = None
    patch_pattern: re.Pattern | None = None

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None

    def has_feature(self, text: str) -> bool:
        return (self.patch_pattern or self.pattern).search(text) is not None


def default_scoring_rules() -> List[ScoringRule]:
    return [
        ScoringRule(
            name="burn-efficiency-multiplier",
            pattern=re.compile(r"invBurnEfficiencyCoef\s*\*\s*1\.75"),
            weight=1000,
            mode=PatchMode.REPLACE_LINE,
            anchor=re.compile(r"invBurnEfficiencyCoef"),
        ),
        ScoringRule(
            name="afterfire",
            pattern=re.compile(r"flashTimer|afterFire2"),
            weight=500,
            mode=PatchMode.SPLICE_BLOCK,
            patch_pattern=re.compile(r"afterFire|flashTimer"),
        ),
    ]


def score_block(text: str, rules: Sequence[ScoringRule]) -> int:
    return sum(rule.weight for rule in rules if rule.matches(text))


def _count(text: str, characters: frozenset) -> int:
    return sum(1 for char in text if char in characters)


def choose_better(first: ScriptBlock, second: ScriptBlock, rules: Sequence[ScoringRule]) -> ScriptBlock:
    """Pick between two differing versions of a block; ``second`` is the later contributor.

    Higher rule score wins, then the longer body, then more arithmetic
    characters, then more bracket characters, then the later contributor.
    """

    first_text = first.text
    second_text = second.text
    keys = (
        lambda text: score_block(text, rules),
        len,
        lambda text: _count(text, ARITHMETIC_CHARACTERS),
        lambda text: _count(text, BRACKET_CHARACTERS),
    )
    for key in keys:
        first_value = key(first_text)
        second_value = key(second_text)
        if first_value != second_value:
            return first if first_value > second_value else second
    return second


def _feature_lines(lines: List[str], pattern: re.Pattern) -> List[str]:
    """The construct starting at the first line matching ``pattern``, through its closing line."""

    codes = strip_lines(lines)
    for start, line in enumerate(lines):
        if not pattern.search(line):
            continue
        depth = 0
        for end in range(start, len(lines)):
            depth += keyword_delta(codes[end])
            if depth <= 0:
                return lines[start:end + 1]
        return lines[start:]
    return []


def apply_patches(base_lines: List[str], donor_lines: List[str], rules: Sequence[ScoringRule]) -> List[str]:
    """Carry features the donor has and the base lacks over into the base."""

    result = list(base_lines)
    donor_text = "\n".join(donor_lines)
    for rule in rules:
        if rule.mode is None:
            continue
        if rule.has_feature("\n".join(result)) or not rule.has_feature(donor_text):
            continue

        if rule.mode == PatchMode.REPLACE_LINE and rule.anchor is not None:
            for donor_line in donor_lines:
                if not rule.pattern.search(donor_line):
                    continue
                for index, line in enumerate(result):
                    if rule.anchor.search(line) and not rule.pattern.search(line):
                        result[index] = donor_line
                        break
            log_debug(f"Patched line feature '{rule.name}' into merged block")
        elif rule.mode == PatchMode.SPLICE_BLOCK:
            spliced = _feature_lines(donor_lines, rule.patch_pattern or rule.pattern)
            if not spliced:
                continue
            insert_at = len(result)
            for index in range(len(result) - 1, -1, -1):
                if FUNCTION_END_PATTERN.match(result[index]):
                    insert_at = index
                    break
            result[insert_at:insert_at] = spliced
            log_debug(f"Spliced feature '{rule.name}' ({len(spliced)} lines) into merged block")
    return result


def resolve_blocks(first: ScriptBlock, second: ScriptBlock, rules: Sequence[ScoringRule]) -> ScriptBlock:
    chosen = choose_better(first, second, rules)
    if chosen.kind != BlockKind.FUNCTION:
        return chosen
    donor = first if chosen is second else second
    return ScriptBlock(
        kind=chosen.kind,
        name=chosen.name,
        lines=apply_patches(chosen.lines, donor.lines, rules),
        is_local=chosen.is_local,
    )


def merge_layouts(layouts: Iterable[ScriptLayout], rules: Sequence[ScoringRule]) -> ScriptLayout:
    merged = ScriptLayout()
    for layout in layouts:
        for kind in BlockKind:
            target = merged.section(kind)
            for name, block in layout.section(kind).items():
                existing = target.get(name)
                if existing is None:
                    target[name] = block
                elif existing.normalized != block.normalized:
                    target[name] = resolve_blocks(existing, block, rules)
        if layout.module_name and not merged.module_name:
            merged.module_name = layout.module_name
    return merged


def render_layout(layout: ScriptLayout) -> str:
    """Reassemble a merged layout: variables, tables, local functions, module functions, statements."""

    functions = list(layout.functions.values())
    ordered: List[ScriptBlock] = [
        *layout.variables.values(),
        *layout.tables.values(),
        *(block for block in functions if block.is_local),
        *(block for block in functions if not block.is_local),
        *layout.statements.values(),
    ]
    parts = [MERGED_HEADER]
    parts.extend(block.text for block in ordered)
    if layout.module_name:
        parts.append(f"return {layout.module_name}")
    return "\n\n".join(parts) + "\n"


def merge_scripts(texts: Sequence[str], rules: Sequence[ScoringRule] | None = None) -> str:
    """Merge script sources given in contributor order.

    Raises :class:`~overlaymerger.script_scanner.ScriptSyntaxError` (a
    ``ValueError``) when a source has an unterminated block.
    """

    rules = default_scoring_rules() if rules is None else rules
    layouts = [scan_script(text) for text in texts]
    return render_layout(merge_layouts(layouts, rules))


__all__ = [
    "PatchMode",
    "ScoringRule",
    "default_scoring_rules",
    "score_block",
    "choose_better",
    "apply_patches",
    "resolve_blocks",
    "merge_layouts",
    "merge_scripts",
    "render_layout",
]
