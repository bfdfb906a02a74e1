"""Tests for svgclip.vector: SVG parsing, styles and rasterization."""

import warnings

import pytest
from lxml import etree
from PIL import Image

from svgclip.geometry import BoundingBox, bounds_of_path
from svgclip.model import ElementOverride
from svgclip.vector import (
    StyleSheet,
    ancestor_matrix,
    computed_style,
    document_view_box,
    element_path,
    fill_coverage,
    fit_view_box,
    parse_length,
    parse_style_attribute,
    parse_svg,
    render_svg,
    stroke_coverage,
    text_runs,
    url_id,
)

SVG = '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 100 100">{}</svg>'


def _doc(body):
    return parse_svg(SVG.format(body))


def _by_id(root, element_id):
    return next(el for el in root.iter() if el.get("id") == element_id)


class TestParsing:
    def test_malformed_raises(self):
        with pytest.raises(etree.XMLSyntaxError):
            parse_svg("<svg><rect></svg>")

    def test_view_box(self):
        assert document_view_box(_doc("")) == (0, 0, 100, 100)

    def test_view_box_falls_back_to_size(self):
        root = parse_svg('<svg xmlns="http://www.w3.org/2000/svg" width="640px" height="480"/>')
        assert document_view_box(root) == (0, 0, 640, 480)

    def test_view_box_default(self):
        root = parse_svg('<svg xmlns="http://www.w3.org/2000/svg"/>')
        assert document_view_box(root) == (0, 0, 300, 150)

    def test_parse_length(self):
        assert parse_length("12.5px") == 12.5
        assert parse_length(None, 3.0) == 3.0
        assert parse_length(7) == 7.0

    def test_style_attribute(self):
        assert parse_style_attribute("fill: red; stroke:blue !important;;") == {
            "fill": "red", "stroke": "blue",
        }

    def test_url_id(self):
        assert url_id("url(#clip-1)") == "clip-1"
        assert url_id("url('#a')") == "a"
        assert url_id("red") is None


class TestFitViewBox:
    def test_meet_centres(self):
        m = fit_view_box((0, 0, 100, 50), 200, 200)
        assert m.apply(0, 0) == (0, 50)
        assert m.apply(100, 50) == (200, 150)

    def test_none_stretches(self):
        m = fit_view_box((10, 0, 100, 50), 200, 200, "none")
        assert m.apply(10, 0) == (0, 0)
        assert m.apply(110, 50) == (200, 200)


class TestElementPath:
    def test_circle(self):
        root = _doc('<circle id="c" cx="50" cy="50" r="10"/>')
        assert bounds_of_path(element_path(_by_id(root, "c"))) == BoundingBox(40, 40, 20, 20)

    def test_degenerate_rect(self):
        root = _doc('<rect id="r" width="0" height="10"/>')
        assert element_path(_by_id(root, "r")) == ""

    def test_polyline_open(self):
        root = _doc('<polyline id="p" points="0,0 10,0 10,10"/>')
        assert not element_path(_by_id(root, "p")).endswith("Z")


class TestStyles:
    def test_specificity_and_inline(self):
        root = _doc(
            '<style>.a { fill: red } #x { fill: blue } g rect { stroke: green }</style>'
            '<g><rect id="x" class="a" style="opacity: 0.5"/></g>'
        )
        sheet = StyleSheet(root)
        style = computed_style(_by_id(root, "x"), None, sheet)
        assert style["fill"] == "blue"
        assert style["stroke"] == "green"
        assert style["opacity"] == "0.5"

    def test_inheritance(self):
        root = _doc('<g fill="red" opacity="0.5"><rect id="r"/></g>')
        sheet = StyleSheet(root)
        g = root[0]
        style = computed_style(_by_id(root, "r"), computed_style(g, None, sheet), sheet)
        assert style["fill"] == "red"
        assert "opacity" not in style

    def test_ancestor_matrix(self):
        root = _doc('<g transform="translate(10 0)"><g transform="scale(2)"><rect id="r"/></g></g>')
        assert ancestor_matrix(_by_id(root, "r")).apply(1, 1) == (12, 2)


class TestTextRuns:
    def test_tspans(self):
        root = _doc('<text id="t" x="5" y="20" font-size="12">A<tspan x="5" dy="15">B</tspan></text>')
        el = _by_id(root, "t")
        runs = text_runs(el, computed_style(el, None, StyleSheet()), StyleSheet())
        assert [(r.text, r.x, r.y) for r in runs] == [("A", 5, 20), ("B", 5, 35)]
        assert runs[0].font_size == 12


class TestCoverage:
    def test_fill_square(self):
        mask = fill_coverage([([(2, 2), (7, 2), (7, 7), (2, 7)], True)], (10, 10))
        assert mask.getpixel((4, 4)) == 255
        assert mask.getpixel((9, 9)) == 0

    def test_mask_is_single_channel_without_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            mask = fill_coverage([([(0, 0), (4, 0), (4, 4)], True)], (5, 5))
        assert mask.mode == "L"
        assert mask.size == (5, 5)

    def test_nonzero_hole(self):
        outer = [(0, 0), (20, 0), (20, 20), (0, 20)]
        inner = [(5, 5), (5, 15), (15, 15), (15, 5)]  # opposite winding
        mask = fill_coverage([(outer, True), (inner, True)], (21, 21))
        assert mask.getpixel((10, 10)) == 0
        assert mask.getpixel((2, 2)) == 255

    def test_evenodd_hole(self):
        outer = [(0, 0), (20, 0), (20, 20), (0, 20)]
        inner = [(5, 5), (15, 5), (15, 15), (5, 15)]
        mask = fill_coverage([(outer, True), (inner, True)], (21, 21), evenodd=True)
        assert mask.getpixel((10, 10)) == 0

    def test_stroke_line(self):
        mask = stroke_coverage([([(0, 5), (9, 5)], False)], (10, 10), 3)
        assert mask.getpixel((5, 5)) == 255
        assert mask.getpixel((5, 0)) == 0


class TestRenderSvg:
    def test_fills_rect(self):
        img = render_svg(SVG.format('<rect width="100" height="100" fill="#ff0000"/>'), 40, 40)
        assert img.size == (40, 40)
        assert img.getpixel((20, 20)) == (255, 0, 0, 255)

    def test_transparent_outside(self):
        img = render_svg(SVG.format('<rect width="50" height="100" fill="red"/>'), 40, 40)
        assert img.getpixel((35, 20))[3] == 0

    def test_color_recolours_shapes(self):
        img = render_svg(SVG.format('<rect width="100" height="100" fill="#ff0000"/>'),
                         20, 20, color="#00ff00")
        assert img.getpixel((10, 10)) == (0, 255, 0, 255)

    def test_overrides(self):
        markup = SVG.format('<rect id="r" width="100" height="100" fill="#ff0000"/>')
        img = render_svg(markup, 20, 20, overrides=(ElementOverride(id="r", fill="#0000ff"),))
        assert img.getpixel((10, 10)) == (0, 0, 255, 255)

    def test_clip_path(self):
        markup = SVG.format(
            '<defs><clipPath id="c"><rect width="50" height="100"/></clipPath></defs>'
            '<rect width="100" height="100" fill="red" clip-path="url(#c)"/>'
        )
        img = render_svg(markup, 40, 40)
        assert img.getpixel((10, 20))[3] == 255
        assert img.getpixel((30, 20))[3] == 0

    def test_use_and_group_transform(self):
        markup = SVG.format(
            '<defs><rect id="sq" width="10" height="10" fill="blue"/></defs>'
            '<g transform="translate(80 80)"><use href="#sq"/></g>'
        )
        img = render_svg(markup, 100, 100)
        assert img.getpixel((85, 85)) == (0, 0, 255, 255)
        assert img.getpixel((50, 50))[3] == 0

    def test_data_uri_markup(self):
        from svgclip.common import to_data_uri
        uri = to_data_uri(SVG.format('<rect width="100" height="100" fill="white"/>').encode(),
                          "image/svg+xml")
        img = render_svg(uri, 10, 10)
        assert isinstance(img, Image.Image)
        assert img.getpixel((5, 5)) == (255, 255, 255, 255)
