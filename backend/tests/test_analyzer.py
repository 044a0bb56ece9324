"""Tests for the deterministic structural analyzer."""

from __future__ import annotations

import asyncio

import pytest

from conftest import BASE_URL, SAMPLE_HTML, make_node, make_page
from pagelens.models import CONTENT_DENSITIES, DIFFICULTIES, LAYOUT_TYPES
from pagelens.services.analyzer import (
    analyze_structure,
    content_density,
    detect_layout_type,
    difficulty,
    find_section_candidates,
    has_significant_spacing,
    layout_role,
    section_score,
)
from pagelens.services.extractor import extract_page
from pagelens.services.normalizer import normalize_html


def _container(css: dict | None = None, n_children: int = 1, class_name: str | None = None):
    children = [make_node("p", depth=1) for _ in range(n_children)]
    return make_node(css=css, children=children, class_name=class_name)


# ---------------------------------------------------------------------------
# Layout type
# ---------------------------------------------------------------------------


class TestLayoutType:
    def test_grid_when_ratio_above_fifth(self):
        tree = [_container({"display": "grid"}), _container({"display": "grid"})]
        tree += [_container() for _ in range(3)]
        assert detect_layout_type(tree) == "grid"

    def test_single_column_without_grid_or_flex(self):
        assert detect_layout_type([_container() for _ in range(4)]) == "single-column"

    def test_single_column_without_containers(self):
        assert detect_layout_type([make_node("p"), make_node("p")]) == "single-column"
        assert detect_layout_type([]) == "single-column"

    def test_two_column(self):
        tree = [_container({"display": "flex"}, n_children=2), _container({"display": "flex"}), _container()]
        assert detect_layout_type(tree) == "two-column"

    def test_mixed_from_flex(self):
        tree = [_container({"display": "flex"})] + [_container() for _ in range(3)]
        assert detect_layout_type(tree) == "mixed"

    def test_grid_ratio_at_boundary_is_mixed(self):
        tree = [_container({"display": "grid"})] + [_container() for _ in range(4)]
        assert detect_layout_type(tree) == "mixed"

    def test_class_hint_counts_as_grid(self):
        tree = [_container(class_name="cols-3"), _container()]
        assert detect_layout_type(tree) == "grid"


# ---------------------------------------------------------------------------
# Section scoring
# ---------------------------------------------------------------------------


class TestSectionScore:
    def test_reference_score(self):
        node = make_node(css={
            "background-color": "blue",
            "display": "flex",
            "position": "relative",
            "padding": "24px",
        })
        assert section_score(node, "white") == 80

    def test_background_same_as_parent(self):
        node = make_node(css={"background-color": "blue", "display": "flex", "position": "relative", "padding": "24px"})
        assert section_score(node, "blue") == 65

    def test_background_none_is_no_background(self):
        node = make_node(css={"background": "none", "display": "flex"})
        assert section_score(node, "white") == section_score(make_node(css={"display": "flex"}), "white")

    def test_grid_and_z_index(self):
        node = make_node(depth=4, css={"display": "grid", "position": "absolute", "z-index": "5"})
        assert section_score(node, None) == 25 + 10 + 10 + 5

    def test_score_capped(self):
        node = make_node(css={
            "background-color": "red",
            "display": "grid",
            "position": "relative",
            "z-index": "2",
            "margin": "2rem",
        })
        assert section_score(node, "white") == 100

    def test_layout_role(self):
        assert layout_role({"display": "flex", "flex-direction": "column"}) == "flex-column"
        assert layout_role({"display": "inline-flex"}) == "flex-row"
        assert layout_role({"position": "absolute"}) == "absolute-positioned"
        assert layout_role({"display": "inline-block"}) == "inline"
        assert layout_role({}) == "container"

    def test_spacing_units(self):
        assert has_significant_spacing({"padding": "1.5rem"}) is True
        assert has_significant_spacing({"margin": "0 auto 32px"}) is True
        assert has_significant_spacing({"margin": "0 auto"}) is False
        assert has_significant_spacing({"padding": "50%"}) is False
        assert has_significant_spacing({"padding-left": "20"}) is True


class TestSectionCandidates:
    def test_background_inherited_from_parent(self):
        child = make_node(order=1, depth=1, css={"background-color": "blue"}, children=[make_node("p", order=2, depth=2)])
        parent = make_node(order=0, css={"background-color": "blue"}, children=[child])
        assert find_section_candidates([parent], root_background="white") == [0]

    def test_child_with_new_background_is_candidate(self):
        child = make_node(order=1, depth=1, css={"background-color": "red"}, children=[make_node("p", order=2, depth=2)])
        parent = make_node(order=0, css={"background-color": "blue"}, children=[child])
        assert find_section_candidates([parent], root_background="white") == [0, 1]


# ---------------------------------------------------------------------------
# Density and difficulty
# ---------------------------------------------------------------------------


class TestDensity:
    def test_low_for_empty(self):
        assert content_density(make_page([]), 0, 0) == "low"

    def test_medium(self):
        page = make_page([], raw_text_content="x" * 3500, images=[{"url": str(i)} for i in range(6)])
        assert content_density(page, 0, 0) == "medium"

    def test_high(self):
        page = make_page(
            [],
            raw_text_content="x" * 3500,
            images=[{"url": str(i)} for i in range(6)],
            forms=[{"fields": []}] * 3,
            ctas=[{"text": "Go"}] * 6,
        )
        assert content_density(page, 0, 0) == "high"


class TestDifficulty:
    def test_easy_for_empty_page(self):
        assert difficulty(make_page([]), "single-column", 0, 0) == ("easy", "simple structure")

    def test_reason_lists_first_three_factors(self):
        page = make_page(
            [make_node("p", order=i) for i in range(60)],
            forms=[{"fields": [{}] * 7}],
            navigation=[{"text": "A", "children": [{"text": "B"}]}],
            embeds=[{"type": "video"}],
        )
        assert difficulty(page, "single-column", 60, 0) == (
            "medium",
            "several nodes, forms present, dropdown menus",
        )

    def test_hard(self):
        page = make_page([], forms=[{"fields": [{}] * 11}], ctas=[{}] * 6)
        level, reason = difficulty(page, "grid", 400, 11)
        assert level == "hard"
        assert reason == "large DOM, deep nesting, complex layout"


# ---------------------------------------------------------------------------
# End to end on a real page
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_page():
    normalized = asyncio.run(normalize_html(SAMPLE_HTML, BASE_URL, fetch_stylesheets=False))
    return extract_page(normalized, SAMPLE_HTML, BASE_URL)


class TestAnalyzeStructure:
    def test_values_in_vocabulary(self, sample_page):
        analysis = analyze_structure(sample_page)
        assert analysis.layout_type in LAYOUT_TYPES
        assert analysis.content_density in CONTENT_DENSITIES
        assert analysis.difficulty in DIFFICULTIES
        assert analysis.section_count == len(analysis.section_candidates)
        assert analysis.node_count == sample_page.total_nodes
        assert analysis.root_node_count == 6

    def test_deterministic(self, sample_page):
        assert analyze_structure(sample_page) == analyze_structure(sample_page)

    def test_page_features(self, sample_page):
        analysis = analyze_structure(sample_page)
        assert analysis.has_hero is True
        assert analysis.has_navigation is True
        assert analysis.has_footer is True
        assert analysis.roles is None

    def test_roles_exposed_on_request(self, sample_page):
        analysis = analyze_structure(sample_page, infer_roles=True)
        assert analysis.roles[0] == "header"
        assert analysis.roles[1] == "nav"
        assert analysis.to_dict()["roles"]["0"] == "header"

    def test_to_dict_keys(self, sample_page):
        out = analyze_structure(sample_page).to_dict()
        assert {"layoutType", "sectionCount", "contentDensity", "difficulty", "difficultyReason"} <= set(out)
        assert "roles" not in out
