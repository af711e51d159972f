import pytest

from htmlbake.css import (
    box_shadow_pad,
    color_alpha,
    corner_radii,
    filter_pad,
    has_state_class_hint,
    is_icon_glyph,
    outpaint_pad,
    parse_px,
    rotation_from_transform,
    split_top_level,
)


@pytest.mark.parametrize(
    "color, expected",
    [
        ("rgba(0, 0, 0, 0.4)", 0.4),
        ("rgb(10, 20, 30)", 1.0),
        ("rgb(10 20 30 / 25%)", 0.25),
        ("hsla(120, 50%, 50%, 0.1)", 0.1),
        ("transparent", 0.0),
        ("#00000080", 128 / 255),
        ("", 0.0),
    ],
)
def test_color_alpha(color, expected):
    assert color_alpha(color) == pytest.approx(expected, abs=1e-3)


def test_split_top_level_ignores_commas_inside_functions():
    value = "rgba(0, 0, 0, 0.2) 0px 2px 4px 0px, rgba(1, 1, 1, 0.5) 0px 0px 1px 0px"
    assert len(split_top_level(value)) == 2


def test_parse_px_fallback():
    assert parse_px("12.5px") == 12.5
    assert parse_px("auto", 3.0) == 3.0
    assert parse_px(None, 1.0) == 1.0


def test_rotation_is_independent_of_translation_and_scale():
    # rotate(30deg) scale(2) translate(40px, 10px)
    assert rotation_from_transform("matrix(1.73205, 1, -1, 1.73205, 40, 10)") == pytest.approx(30.0, abs=1e-3)
    assert rotation_from_transform("matrix(2, 0, 0, 2, 100, 100)") == 0.0
    assert rotation_from_transform("none") == 0.0
    assert rotation_from_transform("rotate(0.25turn)") == pytest.approx(90.0)


def test_box_shadow_pad_skips_inset():
    assert box_shadow_pad("rgba(0, 0, 0, 0.3) 0px 4px 10px 2px") == 16.0
    assert box_shadow_pad("rgba(0, 0, 0, 0.3) 0px 4px 10px 2px inset") == 0.0
    assert box_shadow_pad("none") == 0.0


def test_outpaint_pad_takes_largest_source():
    assert outpaint_pad("none", "blur(6px)") == 12.0
    assert outpaint_pad("none", "drop-shadow(rgba(0, 0, 0, 0.5) 2px 3px 5px)") == 8.0
    assert outpaint_pad("rgba(0, 0, 0, 0.3) 0px 0px 20px 0px", "blur(2px)") == 20.0


def test_filter_pad_ignores_non_painting_filters():
    assert filter_pad("blur(6px)") == 12.0
    assert filter_pad("grayscale(1) brightness(0.8)") == 0.0
    assert filter_pad("none") == 0.0


def test_corner_radii_clamped_and_scaled():
    radii = corner_radii(["40px", "8px", "0px", "50%"], 60, 20, 2.0)
    assert radii == (20.0, 16.0, 0.0, 20.0)


def test_state_class_hints():
    assert has_state_class_hint(["btn", "hover:bg-white/10"])
    assert has_state_class_hint(["is-active"])
    assert not has_state_class_hint(["card", "shadow-lg"])


def test_icon_glyph_detection():
    assert is_icon_glyph("material-symbols-outlined text-xl", "")
    assert is_icon_glyph("", '"Material Icons"')
    assert not is_icon_glyph("icon-button", "Inter")
