"""
Data model shared by the four bake stages.

Analysis → Planner → Executor → Assembler. Everything produced by the
analyzer is frozen; the planner and executor only ever derive new values.
"""

import re
from dataclasses import asdict, dataclass, field, is_dataclass
from typing import Iterator, Optional

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

CONTAINER = "Container"
IMAGE = "Image"
TEXT = "Text"

CLONE = "clone"
IN_PLACE = "inPlace"
RANGE_PART = "rangePart"
BACKGROUND_STACK = "backgroundStack"
CAPTURE_MODES = (CLONE, IN_PLACE, RANGE_PART, BACKGROUND_STACK)

ATOMIC_VISUAL_TAGS = ("IMG", "SVG", "CANVAS", "VIDEO", "PICTURE")

# Every boolean task modifier and the reason token that must accompany it.
MODIFIER_REASONS = {
    "hide_children": "hide-children",
    "hide_own_text": "hide-own-direct-text",
    "neutralize_transforms": "neutralize-transforms",
    "suppress_ancestor_paint": "suppress-ancestor-paint",
    "preserve_own_text_geometry": "preserve-own-text-geometry",
    "preserve_scene_underlay": "preserve-scene-underlay",
    "suppress_underlay_faint_border": "underlay-faint-border-suppressed",
    "decouple_opacity": "decouple-opacity",
    "ancestor_rotation_context": "ancestor-rotation-context",
    "rotation_baked": "rotation-baked",
}

DEFAULT_REASON = "default-clone"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def intersect(self, other: "Rect") -> Optional["Rect"]:
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if right <= left or bottom <= top:
            return None
        return Rect(left, top, right - left, bottom - top)

    def union(self, other: "Rect") -> "Rect":
        left = min(self.x, other.x)
        top = min(self.y, other.y)
        right = max(self.right, other.right)
        bottom = max(self.bottom, other.bottom)
        return Rect(left, top, right - left, bottom - top)

    def contains(self, other: "Rect", tolerance: float = 0.5) -> bool:
        return (
            other.x >= self.x - tolerance
            and other.y >= self.y - tolerance
            and other.right <= self.right + tolerance
            and other.bottom <= self.bottom + tolerance
        )

    def inflate(self, pad: float) -> "Rect":
        return Rect(self.x - pad, self.y - pad, self.width + pad * 2, self.height + pad * 2)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Rect"]:
        if not data:
            return None
        return cls(
            float(data.get("x", 0) or 0),
            float(data.get("y", 0) or 0),
            float(data.get("width", 0) or 0),
            float(data.get("height", 0) or 0),
        )


# ---------------------------------------------------------------------------
# Analysis tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComputedStyle:
    """Computed-style subset captured per element (raw css strings)."""
    background: str = ""
    background_color: str = ""
    background_image: str = "none"
    border: str = ""
    border_width: float = 0.0          # widest painted side, css px
    border_color: str = ""
    border_radius: str = "0px"
    box_shadow: str = "none"
    filter: str = "none"
    clip_path: str = "none"
    mask: str = "none"
    mask_image: str = "none"
    backdrop_filter: str = "none"
    mix_blend_mode: str = "normal"
    overflow: str = "visible"
    overflow_x: str = "visible"
    overflow_y: str = "visible"
    opacity: float = 1.0
    display: str = ""
    visibility: str = "visible"
    position: str = "static"
    z_index: str = "auto"
    transform: str = "none"
    transform_origin: str = ""
    pointer_events: str = "auto"
    transition_property: str = ""
    # Corner radii in device px: (top-left, top-right, bottom-right, bottom-left).
    radii: tuple = (0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class TextStyle:
    color: str = ""
    font_size: str = ""
    font_family: str = ""
    alignment: str = ""
    font_weight: str = ""
    font_style: str = ""
    line_height: str = ""
    letter_spacing: str = ""
    text_transform: str = ""
    text_decoration: str = ""
    text_shadow: str = ""
    white_space: str = ""
    word_break: str = ""
    word_spacing: str = ""
    text_indent: str = ""
    text_overflow: str = ""
    direction: str = ""


@dataclass(frozen=True)
class RangePart:
    """Geometry of a range-control pseudo part, css px relative to the control."""
    part: str                 # "track" or "thumb"
    offset_x: float
    offset_y: float
    width: float
    height: float
    shadow_pad: float = 0.0
    ratio: float = 0.0        # value position within [min, max]


@dataclass(frozen=True)
class AnalysisNode:
    id: str
    type: str
    tag_name: str
    rect: Rect
    html_tag: str = ""
    role: str = ""
    input_type: str = ""
    classes: tuple = ()
    attrs: tuple = ()          # ((key, value), ...)
    dom_path: str = ""
    rotation: float = 0.0
    style: ComputedStyle = field(default_factory=ComputedStyle)
    text: str = ""
    text_style: Optional[TextStyle] = None
    has_visual: bool = False
    has_own_text: bool = False
    is_root: bool = False
    is_mask: bool = False
    is_icon_glyph: bool = False
    synthesized: str = ""      # "", "text", "range-track", "range-thumb"
    range_part: Optional[RangePart] = None
    source_id: str = ""        # owning control for synthesized parts
    children: tuple = ()

    @property
    def is_atomic_visual(self) -> bool:
        return self.tag_name in ATOMIC_VISUAL_TAGS

    def attr(self, key: str, default: str = "") -> str:
        for k, v in self.attrs:
            if k == key:
                return v
        return default


@dataclass(frozen=True)
class MaskInfo:
    has_mask: bool = False
    z_index: int = 0
    rect: Optional[Rect] = None   # css px, viewport coords


@dataclass(frozen=True)
class AnalysisTree:
    root: AnalysisNode
    dpr: float
    viewport: Rect                 # device px
    origin_x: float = 0.0          # root page origin, css px
    origin_y: float = 0.0
    mask: MaskInfo = field(default_factory=MaskInfo)


def walk(node: AnalysisNode) -> Iterator[AnalysisNode]:
    """Pre-order traversal without recursion."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def count_nodes(node: Optional[AnalysisNode]) -> int:
    if node is None:
        return 0
    return sum(1 for _ in walk(node))


# ---------------------------------------------------------------------------
# Planning / execution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CaptureTask:
    id: str
    node_id: str
    output_name: str
    mode: str
    reasons: tuple
    capture_source_node_id: str = ""
    hide_children: bool = False
    hide_own_text: bool = False
    neutralize_transforms: bool = False
    suppress_ancestor_paint: bool = False
    preserve_own_text_geometry: bool = False
    preserve_scene_underlay: bool = False
    suppress_underlay_faint_border: bool = False
    decouple_opacity: bool = False
    ancestor_rotation_context: bool = False
    rotation_baked: bool = False
    rotation_original: float = 0.0
    render_opacity: float = 1.0
    range_part: str = ""
    background_stack_node_ids: tuple = ()

    @property
    def image_path(self) -> str:
        return f"images/{self.output_name}.png"


@dataclass(frozen=True)
class ClipSummary:
    node_id: str
    tag: str
    rect: Rect
    rounded: bool
    inside: bool
    visible_ratio: float


@dataclass(frozen=True)
class RuleTraceRecord:
    node_id: str
    tag: str
    dom_path: str
    node_type: str
    decision: str                 # "capture" or "skip"
    reasons: tuple
    mode: str = ""
    output_name: str = ""
    hide_children: bool = False
    hide_own_text: bool = False
    neutralize_transforms: bool = False
    suppress_ancestor_paint: bool = False
    preserve_own_text_geometry: bool = False
    preserve_scene_underlay: bool = False
    suppress_underlay_faint_border: bool = False
    decouple_opacity: bool = False
    ancestor_rotation_context: bool = False
    rotation_baked: bool = False
    clip_ancestor: Optional[ClipSummary] = None
    outcome: str = "planned"


@dataclass(frozen=True)
class CaptureMetadata:
    mode: str
    output_name: str
    image_width: float
    image_height: float
    content_offset_x: float
    content_offset_y: float
    content_width: float
    content_height: float
    rotation_baked: bool = False
    rotation_original: float = 0.0
    opacity_decoupled: bool = False
    render_opacity: float = 1.0


@dataclass(frozen=True)
class CaptureFailure:
    node_id: str
    output_name: str
    reason: str


# ---------------------------------------------------------------------------
# Debug serialization
# ---------------------------------------------------------------------------

def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _camelize(value):
    if isinstance(value, dict):
        return {camel_case(k) if isinstance(k, str) else k: _camelize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_camelize(v) for v in value]
    return value


def to_debug_dict(obj) -> dict:
    """asdict() with camelCase keys, the same casing as layout.json."""
    if is_dataclass(obj):
        return _camelize(asdict(obj))
    return _camelize(obj)


def sanitize_name_part(value: str, fallback: str = "node", max_length: int = 48) -> str:
    normalized = re.sub(r"\s+", "-", (value or "").strip())
    normalized = re.sub(r"[^a-zA-Z0-9_-]", "-", normalized)
    normalized = re.sub(r"-+", "-", normalized).strip("-_")
    if not normalized:
        return fallback
    return normalized[:max_length]
