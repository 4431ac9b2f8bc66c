from __future__ import annotations

import pytest

from overlaymerger.script_merge import (
    MERGED_HEADER,
    apply_patches,
    choose_better,
    default_scoring_rules,
    merge_scripts,
)
from overlaymerger.script_scanner import (
    BlockKind,
    LineCursor,
    ScriptBlock,
    ScriptSyntaxError,
    keyword_delta,
    scan_script,
    strip_code,
)

MODULE_SOURCE = """\
-- vehicle helper module
local M = {}

local config = {
  rate = 1,
}

local function helper(x)
  if x then
    return 1
  end
  return 2
end

function M.update(dt)
  for i = 1, 3 do
    helper(i)
  end
end

M.onInit = helper

return M
"""

MULTIPLIER_VERSION = """\
local function updateGFX(dt)
  local fuel = invBurnEfficiencyCoef * 1.75 * dt
  device.fuel = fuel
end
"""

AFTERFIRE_VERSION = """\
local function updateGFX(dt)
  local fuel = invBurnEfficiencyCoef * dt
  device.fuel = fuel
  if flashTimer > 0 then
    flashTimer = flashTimer - dt
  end
end
"""


def _statement(text: str) -> ScriptBlock:
    return ScriptBlock(kind=BlockKind.STATEMENT, name=text, lines=[text])


def test_strip_code_blanks_strings_and_comments() -> None:
    code, open_bracket = strip_code('local s = "end" -- end of line')
    assert keyword_delta(code) == 0
    assert not open_bracket

    code, open_bracket = strip_code("local s = [[ function")
    assert keyword_delta(code) == 0
    assert open_bracket

    code, open_bracket = strip_code("end ]] if x then", open_bracket="]]")
    assert keyword_delta(code) == 1
    assert open_bracket is None


def test_strip_code_matches_long_bracket_levels() -> None:
    code, open_bracket = strip_code("local s = [==[ function ]] {")
    assert keyword_delta(code) == 0
    assert "{" not in code
    assert open_bracket == "]==]"

    code, open_bracket = strip_code("end ]] ]=] ]==] do", open_bracket="]==]")
    assert keyword_delta(code) == 1
    assert open_bracket is None

    code, open_bracket = strip_code("x = 1 --[=[ if")
    assert keyword_delta(code) == 0
    assert open_bracket == "]=]"


def test_leveled_long_comment_inside_function_does_not_break_block() -> None:
    layout = scan_script(
        "local function f()\n"
        "  --[==[\n"
        "  if x then\n"
        "  ]]\n"
        "  ]==]\n"
        "  local s = [=[ { do ]=]\n"
        "  return 1\n"
        "end\n"
        "local y = 2\n"
    )

    assert len(layout.functions["f"].lines) == 8
    assert list(layout.variables) == ["y"]


def test_line_cursor_peek_advance_and_skip_to() -> None:
    cursor = LineCursor(["a", "b", "c", "d"])
    assert cursor.peek() == ("a", "a")
    assert cursor.advance() == ("a", "a")
    assert cursor.skip_to(lambda line, _code: line == "c") == ["b", "c"]
    assert cursor.peek()[0] == "d"
    cursor.advance()
    assert cursor.exhausted


def test_scan_script_splits_top_level_blocks() -> None:
    layout = scan_script(MODULE_SOURCE)

    assert list(layout.variables) == ["M"]
    assert list(layout.tables) == ["config"]
    assert list(layout.functions) == ["helper", "M.update"]
    assert list(layout.statements) == ["M.onInit = helper"]
    assert layout.module_name == "M"

    helper = layout.functions["helper"]
    assert helper.is_local
    assert len(helper.lines) == 6
    assert helper.lines[-1] == "end"
    assert not layout.functions["M.update"].is_local
    assert len(layout.functions["M.update"].lines) == 5
    assert len(layout.tables["config"].lines) == 3


def test_scan_script_rejects_unterminated_blocks() -> None:
    with pytest.raises(ScriptSyntaxError):
        scan_script("local function broken()\n  if x then\n    return 1\nend\n")


def test_multiline_variables_and_calls_are_single_blocks() -> None:
    layout = scan_script(
        "local handler = function(a)\n  return a\nend\n"
        "registerCallback(\n  'update',\n  handler\n)\n"
    )
    assert len(layout.variables["handler"].lines) == 3
    assert len(layout.statements) == 1
    assert len(next(iter(layout.statements.values())).lines) == 4


def test_choose_better_prefers_scored_features_over_length() -> None:
    rules = default_scoring_rules()
    scored = _statement("x = invBurnEfficiencyCoef * 1.75")
    longer = _statement("x = invBurnEfficiencyCoef * someMuchLongerFactorName")

    assert choose_better(scored, longer, rules) is scored
    assert choose_better(longer, scored, rules) is scored


def test_choose_better_tie_breakers() -> None:
    rules = default_scoring_rules()
    assert choose_better(_statement("x = 1"), _statement("x = 10"), rules).text == "x = 10"
    assert choose_better(_statement("x = a + b"), _statement("x = a , b"), rules).text == "x = a + b"
    assert choose_better(_statement("f(a)"), _statement("f a "), rules).text == "f(a)"
    assert choose_better(_statement("a"), _statement("b"), rules).text == "b"


def test_complementary_features_are_combined() -> None:
    merged = merge_scripts([MULTIPLIER_VERSION, AFTERFIRE_VERSION])

    assert "invBurnEfficiencyCoef * 1.75 * dt" in merged
    assert "    flashTimer = flashTimer - dt" in merged
    assert merged.index("if flashTimer > 0 then") < merged.rindex("\nend")
    assert merge_scripts([AFTERFIRE_VERSION, MULTIPLIER_VERSION]) == merged


def test_replace_patch_swaps_the_anchor_line() -> None:
    patched = apply_patches(
        AFTERFIRE_VERSION.splitlines(),
        MULTIPLIER_VERSION.splitlines(),
        default_scoring_rules(),
    )
    assert patched[1] == "  local fuel = invBurnEfficiencyCoef * 1.75 * dt"
    assert "    flashTimer = flashTimer - dt" in patched


def test_merge_keeps_blocks_from_every_contributor() -> None:
    merged = merge_scripts(
        [
            "local function a()\n  return 1\nend\n",
            "local function b()\n  return 2\nend\n",
            "local  function a()\n  return   1\nend\n",
        ]
    )
    assert merged == (
        f"{MERGED_HEADER}\n\n"
        "local function a()\n  return 1\nend\n\n"
        "local function b()\n  return 2\nend\n"
    )


def test_render_order_and_idempotence() -> None:
    merged = merge_scripts([MODULE_SOURCE])

    assert merged.startswith(f"{MERGED_HEADER}\n\nlocal M = {{}}\n\nlocal config = {{")
    assert merged.index("local function helper") < merged.index("function M.update")
    assert merged.index("function M.update") < merged.index("M.onInit = helper")
    assert merged.endswith("M.onInit = helper\n\nreturn M\n")
    assert "vehicle helper module" not in merged
    assert merge_scripts([merged]) == merged
