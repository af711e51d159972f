"""
Parsing helpers for computed-style strings.

Everything here works on the raw strings returned by getComputedStyle(),
so the planner and the executor never touch the browser to reason about paint.
"""

import math
import re

_NUMBER = r"-?\d*\.?\d+(?:e-?\d+)?"
_PX_RE = re.compile(rf"({_NUMBER})px", re.IGNORECASE)
_RGBA_RE = re.compile(r"rgba?\(([^)]*)\)", re.IGNORECASE)
_HSLA_RE = re.compile(r"hsla?\(([^)]*)\)", re.IGNORECASE)

ICON_CLASS_RE = re.compile(
    r"(?:^|\s)(?:material-symbols(?:-(?:outlined|rounded|sharp))?"
    r"|material-icons(?:-(?:outlined|round|sharp|two-tone))?)(?:\s|$)",
    re.IGNORECASE,
)

# Utility-class naming for interaction states (hover:, group-hover:, is-active, ...).
STATE_CLASS_RE = re.compile(
    r"(?:^|[:_-])(hover|active|focus|focus-within|focus-visible|pressed|transition|animate)(?:$|[:_-])",
    re.IGNORECASE,
)


def split_top_level(value: str, sep: str = ",") -> list:
    """Split on `sep` outside parentheses and brackets."""
    parts, current, depth = [], [], 0
    for ch in value or "":
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        if ch == sep and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


def parse_px(value, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    match = _PX_RE.search(str(value))
    if not match:
        return default
    try:
        return float(match.group(1))
    except ValueError:
        return default


def parse_float(value, default: float = 0.0) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


def color_alpha(color: str) -> float:
    """Alpha channel of a computed colour string; unknown keywords count as opaque."""
    if not color:
        return 0.0
    text = color.strip().lower()
    if text in ("transparent", "none", "initial"):
        return 0.0
    match = _RGBA_RE.search(text) or _HSLA_RE.search(text)
    if match:
        inner = match.group(1)
        if "/" in inner:
            alpha_raw = inner.split("/", 1)[1].strip()
        else:
            parts = [p.strip() for p in inner.split(",")]
            if len(parts) < 4:
                return 1.0
            alpha_raw = parts[3]
        if alpha_raw.endswith("%"):
            return max(0.0, min(1.0, parse_float(alpha_raw[:-1], 100.0) / 100.0))
        return max(0.0, min(1.0, parse_float(alpha_raw, 1.0)))
    if text.startswith("#"):
        digits = text[1:]
        if len(digits) == 8:
            return int(digits[6:8], 16) / 255.0
        if len(digits) == 4:
            return int(digits[3] * 2, 16) / 255.0
    return 1.0


def is_transparent(color: str) -> bool:
    return color_alpha(color) <= 0.0


def has_background_image(value: str) -> bool:
    return bool(value) and value.strip().lower() != "none"


def is_set(value: str, unset: tuple = ("none", "normal", "auto", "")) -> bool:
    return (value or "").strip().lower() not in unset


def rotation_from_transform(transform: str) -> float:
    """
    Rotation in degrees from the linear part of a computed transform.

    matrix(a, b, c, d, e, f) → atan2(b, a); translation and uniform scale
    do not affect the angle.
    """
    if not transform or transform.strip() == "none":
        return 0.0
    angle = 0.0
    m3d = re.search(r"matrix3d\(([^)]+)\)", transform)
    m2d = re.search(r"matrix\(([^)]+)\)", transform)
    rot = re.search(r"rotate\(([^)]+)\)", transform)
    if m3d or m2d:
        values = [parse_float(v.strip()) for v in (m3d or m2d).group(1).split(",")]
        if len(values) >= 2:
            angle = math.degrees(math.atan2(values[1], values[0]))
    elif rot:
        raw = rot.group(1).strip().lower()
        if raw.endswith("deg"):
            angle = parse_float(raw[:-3])
        elif raw.endswith("rad"):
            angle = math.degrees(parse_float(raw[:-3]))
        elif raw.endswith("turn"):
            angle = parse_float(raw[:-4]) * 360.0
    return round(angle, 4) + 0.0


def parse_radius(value: str, width: float, height: float) -> float:
    """First component of one corner radius, css px. Percentages resolve against the box."""
    if not value:
        return 0.0
    first = value.strip().split()[0]
    if first.endswith("%"):
        return parse_float(first[:-1]) / 100.0 * min(width, height)
    return max(0.0, parse_px(first))


def corner_radii(values, width: float, height: float, dpr: float) -> tuple:
    """(tl, tr, br, bl) radii in device px, clamped to half the shorter side."""
    limit = min(width, height) / 2.0
    radii = []
    for value in list(values or [])[:4]:
        radii.append(min(parse_radius(value, width, height), limit) * dpr)
    while len(radii) < 4:
        radii.append(0.0)
    return tuple(radii)


# ---------------------------------------------------------------------------
# Outpaint (content painted outside the border box)
# ---------------------------------------------------------------------------

def box_shadow_pad(value: str) -> float:
    """max(|x|, |y|) + blur + spread over outer shadows; inset shadows stay inside the box."""
    if not is_set(value):
        return 0.0
    best = 0.0
    for part in split_top_level(value):
        if re.search(r"\binset\b", part, re.IGNORECASE):
            continue
        nums = [parse_float(n) for n in _PX_RE.findall(part)]
        nums += [0.0] * (4 - len(nums))
        pad = max(abs(nums[0]), abs(nums[1])) + nums[2] + nums[3]
        best = max(best, pad)
    return best


def drop_shadow_pad(filter_value: str) -> float:
    if not is_set(filter_value):
        return 0.0
    best = 0.0
    for inner in re.findall(r"drop-shadow\(((?:[^()]|\([^()]*\))*)\)", filter_value):
        nums = [parse_float(n) for n in _PX_RE.findall(inner)]
        nums += [0.0] * (3 - len(nums))
        best = max(best, max(abs(nums[0]), abs(nums[1])) + nums[2])
    return best


def blur_pad(filter_value: str) -> float:
    if not is_set(filter_value):
        return 0.0
    best = 0.0
    for inner in re.findall(r"(?<![-\w])blur\(([^)]+)\)", filter_value):
        best = max(best, abs(parse_px(inner.strip())) * 2)
    return best


def filter_pad(filter_value: str) -> float:
    """Reach (css px) of drop-shadow and blur filters beyond the border box."""
    return max(drop_shadow_pad(filter_value), blur_pad(filter_value))


def outpaint_pad(box_shadow: str, filter_value: str) -> float:
    """Clip padding (css px) needed to keep shadows and blur inside the capture."""
    return max(box_shadow_pad(box_shadow), filter_pad(filter_value))


# ---------------------------------------------------------------------------
# Class hints
# ---------------------------------------------------------------------------

def has_state_class_hint(classes) -> bool:
    for cls in classes or ():
        for token in cls.split(":"):
            if STATE_CLASS_RE.search(token):
                return True
    return False


def is_icon_glyph(class_name: str, font_family: str) -> bool:
    family = (font_family or "").lower()
    return bool(ICON_CLASS_RE.search(class_name or "")) or "material symbols" in family or "material icons" in family
