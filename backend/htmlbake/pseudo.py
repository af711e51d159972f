"""
Pseudo-element style resolution for range controls.

This is the only part of analysis tied to Chromium's private pseudo-elements
(::-webkit-slider-runnable-track / ::-webkit-slider-thumb). Computed style
for those often reports the control's own box with no paint, so author
stylesheet rules are consulted as a fallback.
"""

from dataclasses import dataclass

from htmlbake.css import box_shadow_pad, has_background_image, is_transparent, parse_float, parse_px
from htmlbake.models import RangePart

TRACK_PSEUDO = "-webkit-slider-runnable-track"
THUMB_PSEUDO = "-webkit-slider-thumb"

PSEUDO_PROPS = (
    "width",
    "height",
    "border",
    "border-top-width",
    "border-right-width",
    "border-bottom-width",
    "border-left-width",
    "box-shadow",
    "margin-top",
    "background",
    "background-color",
    "background-image",
)

# Returns the computed pseudo style plus every matching author rule, merged in sheet order.
RESOLVE_PSEUDO_JS = """
({ selector, pseudo, props }) => {
    const el = document.querySelector(selector);
    if (!el) return null;

    const splitSelectorList = (text) => {
        const list = [];
        let current = '';
        let paren = 0;
        let bracket = 0;
        for (const ch of String(text || '')) {
            if (ch === '(') paren += 1;
            if (ch === ')') paren = Math.max(0, paren - 1);
            if (ch === '[') bracket += 1;
            if (ch === ']') bracket = Math.max(0, bracket - 1);
            if (ch === ',' && paren === 0 && bracket === 0) {
                if (current.trim()) list.push(current.trim());
                current = '';
            } else {
                current += ch;
            }
        }
        if (current.trim()) list.push(current.trim());
        return list;
    };

    const token = `::${pseudo}`;
    const matches = (selectorText) => {
        for (const sel of splitSelectorList(selectorText)) {
            const idx = sel.indexOf(token);
            if (idx < 0) continue;
            const base = `${sel.slice(0, idx)}${sel.slice(idx + token.length)}`.trim();
            if (!base) return true;
            try {
                if (el.matches(base)) return true;
            } catch (_) {
                // selector fragment not understood by matches()
            }
        }
        return false;
    };

    const rules = {};
    const walk = (list) => {
        for (const rule of Array.from(list || [])) {
            if (rule.type === CSSRule.STYLE_RULE) {
                if (!matches(rule.selectorText || '')) continue;
                for (let i = 0; i < rule.style.length; i += 1) {
                    const prop = rule.style[i];
                    const value = rule.style.getPropertyValue(prop);
                    if (prop && value) rules[String(prop).toLowerCase()] = String(value).trim();
                }
            } else if (rule.cssRules) {
                walk(rule.cssRules);
            }
        }
    };
    for (const sheet of Array.from(document.styleSheets || [])) {
        try {
            walk(sheet.cssRules);
        } catch (_) {
            // cross-origin sheet
        }
    }

    const computedStyle = window.getComputedStyle(el, `::${pseudo}`);
    const computed = {};
    for (const prop of props) {
        computed[prop] = computedStyle.getPropertyValue(prop) || '';
    }
    return { computed, rules };
}
"""


def _border_width(style: dict, side: str) -> float:
    side_value = style.get(f"border-{side}-width")
    if side_value and "px" in side_value:
        return max(0.0, parse_px(side_value))
    return max(0.0, parse_px(style.get("border"), 0.0))


def merge_pseudo_style(computed: dict, rules: dict, control_width: float, control_height: float) -> dict:
    """
    Pick computed values unless they look like an unset default: the pseudo box
    equals the control's own box and nothing is painted. Then rules win.
    """
    computed = computed or {}
    rules = rules or {}
    width = parse_px(computed.get("width"), float("nan"))
    height = parse_px(computed.get("height"), float("nan"))
    border_sum = sum(_border_width(computed, side) for side in ("top", "right", "bottom", "left"))
    no_paint = (
        is_transparent(computed.get("background-color", ""))
        and not has_background_image(computed.get("background-image", ""))
        and border_sum <= 0.01
        and box_shadow_pad(computed.get("box-shadow", "")) <= 0.01
    )
    looks_like_control = abs(width - control_width) <= 0.5 and abs(height - control_height) <= 0.5
    prefer_rules = looks_like_control and no_paint

    resolved = {}
    for prop in PSEUDO_PROPS:
        computed_value = computed.get(prop, "") or ""
        rule_value = rules.get(prop, "") or ""
        if prefer_rules:
            resolved[prop] = rule_value or computed_value
        else:
            resolved[prop] = computed_value or rule_value
    return resolved


def value_ratio(min_value, max_value, value) -> float:
    low = parse_float(min_value, 0.0)
    high = parse_float(max_value, 100.0)
    current = parse_float(value, low)
    span = max(0.0001, high - low)
    return min(1.0, max(0.0, (current - low) / span))


def range_geometry(control_width: float, control_height: float, track: dict, thumb: dict, ratio: float) -> tuple:
    """
    Track and thumb boxes, css px relative to the control's top-left.

    Thumb travel = track width - track side borders - thumb width; the thumb
    sits at ratio * travel from the track's inner left edge.
    """
    track_height_raw = parse_px(track.get("height"), control_height)
    track_bt = _border_width(track, "top")
    track_bb = _border_width(track, "bottom")
    track_bl = _border_width(track, "left")
    track_br = _border_width(track, "right")
    track_height = max(1.0, track_height_raw + track_bt + track_bb)
    track_width = max(1.0, control_width)
    track_y = (control_height - track_height) / 2

    base = track_height_raw if track_height_raw > 0 else track_height
    thumb_width = parse_px(thumb.get("width"), float("nan"))
    thumb_height = parse_px(thumb.get("height"), float("nan"))
    if not thumb_width > 0 or thumb_width >= track_width * 0.8:
        thumb_width = max(8.0, base * 2)
    if not thumb_height > 0 or thumb_height >= max(control_height * 4, track_height * 6):
        thumb_height = max(12.0, base * 3)
    thumb_width += _border_width(thumb, "left") + _border_width(thumb, "right")
    thumb_height += _border_width(thumb, "top") + _border_width(thumb, "bottom")

    margin_top = parse_px(thumb.get("margin-top"), 0.0)
    if abs(margin_top) > max(control_height * 4, track_height * 6):
        margin_top = 0.0

    travel = max(0.0, track_width - track_bl - track_br - thumb_width)
    thumb_x = track_bl + ratio * travel
    if abs(margin_top) > 0.001:
        # Author-specified margin-top places the thumb relative to the track content box.
        thumb_y = (control_height - track_height_raw) / 2 + track_bt + margin_top
    else:
        thumb_y = track_y + (track_height - thumb_height) / 2

    track_part = RangePart(
        part="track",
        offset_x=0.0,
        offset_y=track_y,
        width=track_width,
        height=track_height,
        shadow_pad=box_shadow_pad(track.get("box-shadow", "")),
        ratio=ratio,
    )
    thumb_part = RangePart(
        part="thumb",
        offset_x=thumb_x,
        offset_y=thumb_y,
        width=thumb_width,
        height=thumb_height,
        shadow_pad=box_shadow_pad(thumb.get("box-shadow", "")),
        ratio=ratio,
    )
    return track_part, thumb_part


@dataclass
class RangeControlStyles:
    track: dict
    thumb: dict


class PseudoStyleResolver:
    """Resolve the style of one (element, pseudo-element) pair in the live page."""

    def __init__(self, page):
        self.page = page

    async def resolve(self, selector: str, pseudo: str, control_width: float, control_height: float) -> dict:
        raw = await self.page.evaluate(
            RESOLVE_PSEUDO_JS,
            {"selector": selector, "pseudo": pseudo, "props": list(PSEUDO_PROPS)},
        )
        if not raw:
            return {}
        return merge_pseudo_style(raw.get("computed"), raw.get("rules"), control_width, control_height)

    async def resolve_range(self, selector: str, control_width: float, control_height: float) -> RangeControlStyles:
        track = await self.resolve(selector, TRACK_PSEUDO, control_width, control_height)
        thumb = await self.resolve(selector, THUMB_PSEUDO, control_width, control_height)
        return RangeControlStyles(track=track, thumb=thumb)
