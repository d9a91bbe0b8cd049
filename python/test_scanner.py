"""
Tests for the pattern scanner: built-in grammars, HTML markup, custom
patterns and the per-pattern match cap.

Run: python3 test_scanner.py
From: python/
"""

import sys

sys.path.insert(0, '.')

import pytest

from marginalia.config import PatternDefinition, PatternError, ScanConfig, compile_pattern
from marginalia.models import AnnotationKind
from marginalia.scan.grammars import HIGHLIGHT_REGEX, MatchLimitExceeded, bounded_finditer
from marginalia.scan.html_tags import parse_html_color, parse_html_fragment
from marginalia.scan.scanner import scan_candidates


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _scan(text, **config):
    return scan_candidates(text, [], ScanConfig(**config))


def _texts(text, **config):
    return [c.text for c in _scan(text, **config).candidates]


# ---------------------------------------------------------------------------
# Built-in grammars
# ---------------------------------------------------------------------------

def test_highlight_basic():
    outcome = _scan("==text==")
    assert len(outcome.candidates) == 1
    c = outcome.candidates[0]
    assert c.kind == AnnotationKind.HIGHLIGHT
    assert c.text == "text"
    assert (c.match_start, c.match_end) == (0, 8)
    assert outcome.diagnostics == []
    print("PASS: ==text== is one highlight")


def test_triple_delimiters_rejected():
    assert _texts("===text===") == []
    assert _texts("%%%text%%%") == []
    assert _texts("a ===b=== c ==d==") == ["d"]
    print("PASS: guard characters reject === and %%%")


def test_native_comment():
    outcome = _scan("body %%note%% more")
    assert [(c.kind, c.text) for c in outcome.candidates] == [(AnnotationKind.COMMENT, "note")]
    print("PASS: native comment")


def test_whitespace_only_capture_skipped():
    assert _texts("==   ==") == []
    assert _texts("%% \n %%") == []
    print("PASS: whitespace-only captures skipped")


def test_multiline_highlight_and_single_equals():
    assert _texts("==a\nb==") == ["a\nb"]
    assert _texts("==x = y==") == ["x = y"]
    print("PASS: multi-line highlight and inner '='")


def test_html_comments_are_gated():
    text = "para <!--  a note  --> end"
    assert _texts(text) == []
    outcome = _scan(text, detect_html_comments=True)
    assert len(outcome.candidates) == 1
    c = outcome.candidates[0]
    assert c.kind == AnnotationKind.COMMENT
    assert c.text == "a note"
    assert c.source == "html-comment"
    print("PASS: HTML comments only with detect_html_comments")


def test_candidates_sorted_by_offset():
    text = "%%first%% <mark>second</mark> ==third== TODO(fourth)"
    outcome = _scan(
        text,
        custom_patterns=[{"name": "todo", "pattern": r"TODO\((.+?)\)", "kind": "comment"}],
    )
    assert [c.text for c in outcome.candidates] == ["first", "second", "third", "fourth"]
    starts = [c.match_start for c in outcome.candidates]
    assert starts == sorted(starts)
    print("PASS: candidates in document order")


# ---------------------------------------------------------------------------
# HTML highlight markup
# ---------------------------------------------------------------------------

def test_mark_without_color():
    outcome = _scan("a <mark>marked</mark> b")
    assert len(outcome.candidates) == 1
    c = outcome.candidates[0]
    assert c.kind == AnnotationKind.HTML
    assert c.text == "marked"
    assert c.color is None
    assert c.source == "mark"
    print("PASS: <mark> without color")


def test_span_needs_background():
    assert _texts('<span style="color: red">plain</span>') == []
    outcome = _scan('<span style="background-color: #FF0">hi</span>')
    assert [(c.text, c.color) for c in outcome.candidates] == [("hi", "#ffff00")]
    outcome = _scan("<span style='background: rgb(255, 0, 0)'>rgb</span>")
    assert [(c.text, c.color) for c in outcome.candidates] == [("rgb", "#ff0000")]
    print("PASS: <span> background colors")


def test_font_color():
    outcome = _scan('<font color="Green">f</font>')
    assert [(c.text, c.color) for c in outcome.candidates] == [("f", "#008000")]
    assert _texts('<font color="not-a-color">f</font>') == []
    print("PASS: <font color>")


def test_nested_markup_text():
    outcome = _scan('<mark style="background:yellow">a <b>bold</b> word</mark>')
    assert [(c.text, c.color) for c in outcome.candidates] == [("a bold word", "#ffff00")]
    print("PASS: nested markup flattened to text")


def test_mark_inside_non_highlight_tag():
    outcome = _scan('<span class="x">see <mark>key</mark> here</span>')
    assert [(c.text, c.source) for c in outcome.candidates] == [("key", "mark")]
    assert outcome.candidates[0].match_start == len('<span class="x">see ')

    outcome = _scan('<font face="serif"><mark>key</mark></font>')
    assert [(c.text, c.source) for c in outcome.candidates] == [("key", "mark")]

    outcome = _scan('<span>a <span style="background: red">inner</span> b</span> <mark>next</mark>')
    assert [(c.text, c.color) for c in outcome.candidates] == [("inner", "#ff0000"), ("next", None)]
    print("PASS: highlights nested in a rejected tag are found")


def test_highlight_tag_consumes_its_contents():
    outcome = _scan('<mark>a <span style="background: red">b</span> c</mark>')
    assert [(c.text, c.color) for c in outcome.candidates] == [("a b c", None)]
    print("PASS: nested colors do not leak into the outer highlight")


def test_excluded_outer_tag_still_scans_inside():
    from marginalia.scan.exclusions import compute_excluded_ranges

    text = "<span>`code` <mark>key</mark></span>"
    outcome = scan_candidates(text, compute_excluded_ranges(text), ScanConfig())
    assert [c.text for c in outcome.candidates] == ["key"]
    print("PASS: excluded outer tag does not hide nested highlights")


def test_parse_html_fragment_rejects_empty():
    assert parse_html_fragment("<mark>   </mark>") is None
    assert parse_html_fragment("<mark>x</mark>") == ("mark", "x", None)
    print("PASS: empty html highlight rejected")


def test_parse_html_color():
    assert parse_html_color("yellow") == "#ffff00"
    assert parse_html_color("#ABC") == "#aabbcc"
    assert parse_html_color("#a1b2c3") == "#a1b2c3"
    assert parse_html_color("rgb(0, 128, 255)") == "#0080ff"
    assert parse_html_color("rgba(300, 0, 0, 0.5)") == "#ff0000"
    assert parse_html_color("red !important") == "#ff0000"
    assert parse_html_color("#12") is None
    assert parse_html_color("") is None
    assert parse_html_color(None) is None
    print("PASS: html color normalisation")


# ---------------------------------------------------------------------------
# Custom patterns
# ---------------------------------------------------------------------------

def test_custom_pattern_kinds():
    outcome = _scan(
        "!!bright!! and TODO(fix)",
        custom_patterns=[
            {"name": "bang", "pattern": r"!!(.+?)!!"},
            {"name": "todo", "pattern": r"TODO\((.+?)\)", "kind": "comment"},
        ],
    )
    found = [(c.kind, c.text, c.source) for c in outcome.candidates]
    assert found == [
        (AnnotationKind.HIGHLIGHT, "bright", "bang"),
        (AnnotationKind.COMMENT, "fix", "todo"),
    ]
    print("PASS: custom highlight and comment patterns")


def test_custom_pattern_respects_exclusions():
    from marginalia.scan.exclusions import compute_excluded_ranges

    text = "`!!code!!` !!live!!"
    config = ScanConfig(custom_patterns=[{"name": "bang", "pattern": r"!!(.+?)!!"}])
    outcome = scan_candidates(text, compute_excluded_ranges(text), config)
    assert [c.text for c in outcome.candidates] == ["live"]
    print("PASS: custom patterns honour exclusions")


def test_match_cap_exceeded_discards_pattern():
    text = "==kept== " + "x" * 1001
    outcome = scan_candidates(
        text,
        [],
        ScanConfig(custom_patterns=[{"name": "every-x", "pattern": "(x)"}]),
        file_path="notes/a.md",
    )
    assert [c.text for c in outcome.candidates] == ["kept"]
    assert len(outcome.diagnostics) == 1
    diag = outcome.diagnostics[0]
    assert diag.pattern == "every-x"
    assert diag.file_path == "notes/a.md"
    assert "1000" in diag.message
    print("PASS: exceeding the cap yields a diagnostic and no matches")


def test_match_cap_exactly_reached():
    text = "x" * 1000
    outcome = _scan(text, custom_patterns=[{"name": "every-x", "pattern": "(x)"}])
    assert len(outcome.candidates) == 1000
    assert outcome.diagnostics == []
    print("PASS: exactly max matches is allowed")


def test_configurable_cap():
    outcome = _scan("abc abc abc", custom_patterns=[{"name": "abc", "pattern": "(abc)"}], max_matches_per_pattern=2)
    assert outcome.candidates == []
    assert len(outcome.diagnostics) == 1
    print("PASS: max_matches_per_pattern is configurable")


def test_zero_length_pattern_terminates():
    matches = list(bounded_finditer(compile_pattern(PatternDefinition(name="z", pattern="(a*)")).regex, "bbb", 10))
    assert [m.start() for m in matches] == [0, 1, 2, 3]
    outcome = _scan("bbb", custom_patterns=[{"name": "z", "pattern": "(a*)"}])
    assert outcome.candidates == []
    assert outcome.diagnostics == []
    print("PASS: zero-length matches advance and terminate")


def test_bounded_finditer_raises_past_cap():
    with pytest.raises(MatchLimitExceeded) as info:
        list(bounded_finditer(HIGHLIGHT_REGEX, "==a== ==b== ==c==", 2, name="hl"))
    assert info.value.pattern_name == "hl"
    assert info.value.limit == 2
    print("PASS: bounded_finditer raises past the cap")


# ---------------------------------------------------------------------------
# Pattern validation
# ---------------------------------------------------------------------------

def test_compile_pattern_errors():
    with pytest.raises(PatternError):
        compile_pattern(PatternDefinition(name="broken", pattern="(unclosed"))
    with pytest.raises(PatternError):
        compile_pattern(PatternDefinition(name="nogroup", pattern="abc"))
    with pytest.raises(PatternError):
        compile_pattern(PatternDefinition(name="twogroups", pattern="(a)(b)"))
    with pytest.raises(PatternError):
        compile_pattern(PatternDefinition(name="empty", pattern=""))
    print("PASS: invalid patterns rejected")


def test_invalid_pattern_rejected_at_config_time():
    with pytest.raises(ValueError):
        ScanConfig(custom_patterns=[{"name": "broken", "pattern": "(("}])
    with pytest.raises(ValueError):
        ScanConfig(max_matches_per_pattern=0)
    config = ScanConfig(custom_patterns=[{"name": "ok", "pattern": r"\+\+(.+?)\+\+"}])
    assert [p.name for p in config.compiled_patterns] == ["ok"]
    print("PASS: config validation")


if __name__ == "__main__":
    tests = [
        test_highlight_basic,
        test_triple_delimiters_rejected,
        test_native_comment,
        test_whitespace_only_capture_skipped,
        test_multiline_highlight_and_single_equals,
        test_html_comments_are_gated,
        test_candidates_sorted_by_offset,
        test_mark_without_color,
        test_span_needs_background,
        test_font_color,
        test_nested_markup_text,
        test_mark_inside_non_highlight_tag,
        test_highlight_tag_consumes_its_contents,
        test_excluded_outer_tag_still_scans_inside,
        test_parse_html_fragment_rejects_empty,
        test_parse_html_color,
        test_custom_pattern_kinds,
        test_custom_pattern_respects_exclusions,
        test_match_cap_exceeded_discards_pattern,
        test_match_cap_exactly_reached,
        test_configurable_cap,
        test_zero_length_pattern_terminates,
        test_bounded_finditer_raises_past_cap,
        test_compile_pattern_errors,
        test_invalid_pattern_rejected_at_config_time,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print(f"\n{'='*60}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed == 0:
        print("ALL TESTS PASSED")
    else:
        print("SOME TESTS FAILED")
