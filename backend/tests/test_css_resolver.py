"""Tests for stylesheet parsing and per-element CSS resolution."""

from __future__ import annotations

from pagelens.services.css_resolver import (
    build_css_info,
    detect_breakpoints,
    detect_flex_columns,
    detect_grid_columns,
    parse_inline_style,
    parse_stylesheet,
    resolve_css,
)


def _entry(name: str, **properties) -> dict:
    return {"className": name, "properties": {k.replace("_", "-"): v for k, v in properties.items()}}


# ---------------------------------------------------------------------------
# Inline style parsing
# ---------------------------------------------------------------------------


class TestParseInlineStyle:
    def test_basic_declarations(self):
        assert parse_inline_style("color: red; margin: 0 auto") == {"color": "red", "margin": "0 auto"}

    def test_property_names_lowercased(self):
        assert parse_inline_style("Background-Color: #FFF") == {"background-color": "#FFF"}

    def test_malformed_declarations_skipped(self):
        assert parse_inline_style("color red; : x; margin: ; width: 10px") == {"width": "10px"}

    def test_semicolon_inside_url_kept(self):
        props = parse_inline_style('background: url("data:image/png;base64,xx"); color: red')
        assert props["background"] == 'url("data:image/png;base64,xx")'
        assert props["color"] == "red"

    def test_empty_and_none(self):
        assert parse_inline_style("") == {}
        assert parse_inline_style(None) == {}


# ---------------------------------------------------------------------------
# Resolution precedence
# ---------------------------------------------------------------------------


class TestResolveCss:
    def test_later_class_overrides_earlier(self):
        dictionary = [_entry("a", color="red", margin="0"), _entry("b", color="blue")]
        assert resolve_css(["a", "b"], dictionary) == {"color": "blue", "margin": "0"}
        assert resolve_css(["b", "a"], dictionary) == {"color": "red", "margin": "0"}

    def test_inline_always_wins(self):
        dictionary = [_entry("a", color="red"), _entry("b", padding="2px")]
        resolved = resolve_css("a b", dictionary, "color: green; PADDING: 4px")
        assert resolved == {"color": "green", "padding": "4px"}

    def test_class_match_is_case_insensitive(self):
        dictionary = [_entry("Hero", display="flex")]
        assert resolve_css(["hero"], dictionary) == {"display": "flex"}

    def test_non_overlapping_classes_order_independent(self):
        dictionary = [_entry("a", color="red"), _entry("b", margin="0")]
        assert resolve_css(["a", "b"], dictionary) == resolve_css(["b", "a"], dictionary)

    def test_media_variants_merge_after_base(self):
        dictionary = [
            _entry("grid", display="grid"),
            {"className": "grid", "properties": {"display": "block"}, "mediaQuery": "@media (max-width: 600px)"},
        ]
        assert resolve_css(["grid"], dictionary) == {"display": "block"}

    def test_no_classes_no_inline(self):
        assert resolve_css(None, [_entry("a", color="red")]) == {}


# ---------------------------------------------------------------------------
# Stylesheet parsing
# ---------------------------------------------------------------------------


class TestParseStylesheet:
    def test_repeated_class_merged_later_wins(self):
        classes, _ = parse_stylesheet(".a { color: red; margin: 0 } .a { color: blue }")
        assert classes == [{"className": "a", "properties": {"color": "blue", "margin": "0"}}]

    def test_selector_lists_and_descendants(self):
        classes, _ = parse_stylesheet(".a, .b { color: red } div .c { margin: 0 } div { padding: 0 }")
        assert [c["className"] for c in classes] == ["a", "b", "c"]

    def test_pseudo_selectors_ignored(self):
        classes, _ = parse_stylesheet("a.link:hover { color: red }")
        assert classes == []

    def test_media_entries_kept_separate(self):
        css = ".grid { display: grid } @media (max-width:  600px) { .grid { display: block } }"
        classes, _ = parse_stylesheet(css)
        assert classes[0] == {"className": "grid", "properties": {"display": "grid"}}
        assert classes[1] == {
            "className": "grid",
            "properties": {"display": "block"},
            "mediaQuery": "@media (max-width: 600px)",
        }

    def test_keyframes_and_comments_skipped(self):
        css = "/* .ghost { color: red } */ @keyframes fade { from { opacity: 0 } to { opacity: 1 } } .real { color: red }"
        classes, _ = parse_stylesheet(css)
        assert [c["className"] for c in classes] == ["real"]

    def test_import_statement_before_block(self):
        classes, _ = parse_stylesheet("@import url(x.css); .a { color: red }")
        assert classes == [{"className": "a", "properties": {"color": "red"}}]

    def test_unterminated_block_stops_scan(self):
        classes, _ = parse_stylesheet(".a { color: red } .b { color: blue")
        assert [c["className"] for c in classes] == ["a"]

    def test_font_face_families(self):
        css = "@font-face { font-family: 'Brand Sans'; src: url(a.woff2) } @font-face { font-family: Mono, monospace }"
        _, families = parse_stylesheet(css)
        assert families == ["Brand Sans", "Mono"]


# ---------------------------------------------------------------------------
# Page-level signals
# ---------------------------------------------------------------------------


class TestPageSignals:
    def test_grid_columns(self):
        assert detect_grid_columns(".g { grid-template-columns: repeat(4, 1fr) }") == 4
        assert detect_grid_columns(".g { grid-template-columns: 1fr 2fr }") == 2
        assert detect_grid_columns(".g { grid-template-columns: 100px 200px 100px }") == 3
        assert detect_grid_columns(".g { display: grid }") is None

    def test_flex_columns(self):
        assert detect_flex_columns(".c { flex-basis: 33.33% }") == 3
        assert detect_flex_columns(".c { flex-basis: 40% }") == 3
        assert detect_flex_columns(".c { width: calc(100% / 4) }") == 4
        assert detect_flex_columns(".c { width: 50% }") == 2
        assert detect_flex_columns(".c { max-width: 25% }") is None

    def test_breakpoints_sorted_unique(self):
        css = "@media (min-width: 1024px) {} @media (max-width: 768px) {} @media (max-width: 768px) {}"
        assert detect_breakpoints(css) == ["768px", "1024px"]

    def test_build_css_info(self):
        css = ".grid { grid-template-columns: repeat(3, 1fr) } @media (max-width: 768px) { .grid { grid-template-columns: 1fr } }"
        info, families = build_css_info(css)
        assert info["gridColumns"] == 3
        assert info["breakpoints"] == ["768px"]
        assert info["hasResponsiveGrid"] is True
        assert len(info["classes"]) == 2
        assert families == []
