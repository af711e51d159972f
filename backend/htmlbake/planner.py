"""
Capture planner.

Pure function of the AnalysisTree: walks it once (pre-order, explicit stack)
and decides for every node whether it gets an image and how that image is
isolated. Decisions come from an ordered list of rules; each rule reads an
immutable DecisionContext and writes to a Decision, and a modifier can only
be switched on through Decision.set_flag() so its reason token is always
recorded with it.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Optional

from htmlbake.css import (
    color_alpha,
    filter_pad,
    has_background_image,
    has_state_class_hint,
    is_set,
)
from htmlbake.models import (
    BACKGROUND_STACK,
    CLONE,
    CONTAINER,
    DEFAULT_REASON,
    IMAGE,
    IN_PLACE,
    MODIFIER_REASONS,
    RANGE_PART,
    AnalysisNode,
    AnalysisTree,
    CaptureTask,
    ClipSummary,
    Rect,
    RuleTraceRecord,
    sanitize_name_part,
)

# Thresholds
STATE_LAYER_MAX_VISIBLE = 0.05
LOW_ALPHA_MAX = 0.12
LOW_ALPHA_MIN_AREA = 0.002
LOW_ALPHA_MAX_AREA = 0.35
FAINT_BORDER_MAX_ALPHA = 0.2
STACK_MAX_DEPTH = 2
STACK_BASE_MIN_COVERAGE = 0.7
STACK_OVERLAY_MIN_OVERLAP = 0.92
ROTATION_EPSILON = 0.01
ROUNDED_RADIUS_MIN = 0.5

INTERACTIVE_TAGS = {"A", "BUTTON", "INPUT", "SELECT", "TEXTAREA", "LABEL", "SUMMARY", "OPTION"}
INTERACTIVE_ROLES = {
    "button", "link", "checkbox", "radio", "switch", "tab", "slider",
    "menuitem", "option", "textbox", "combobox", "searchbox", "spinbutton",
}


# ============================================================
# CONTEXT
# ============================================================

@dataclass(frozen=True)
class ClipEntry:
    node_id: str
    tag: str
    rect: Rect
    radii: tuple = (0.0, 0.0, 0.0, 0.0)

    @property
    def rounded(self) -> bool:
        return any(r > ROUNDED_RADIUS_MIN for r in self.radii)

    @property
    def token(self) -> str:
        return f"{self.tag.lower()}:{self.node_id}"


@dataclass(frozen=True)
class DecisionContext:
    node: AnalysisNode
    depth: int
    viewport: Rect
    dpr: float
    bake_rotation: bool
    clip: Optional[ClipEntry] = None
    clip_inside: bool = True
    visible_ratio: float = 1.0
    ancestor_rotation: float = 0.0
    ancestor_effect: str = ""
    self_effects: tuple = ()
    outpaint: float = 0.0              # drop-shadow/blur reach, device px
    stack_overlays: tuple = ()         # overlay ids when this node is a stack base

    @property
    def self_rotation(self) -> float:
        return self.node.rotation

    @property
    def has_self_rotation(self) -> bool:
        return abs(self.node.rotation) > ROTATION_EPSILON

    @property
    def has_ancestor_rotation(self) -> bool:
        return abs(self.ancestor_rotation) > ROTATION_EPSILON


class Decision:
    """Mutable result of evaluating the rule list for one node."""

    def __init__(self):
        self.mode = CLONE
        self.reasons = []
        self.flags = {name: False for name in MODIFIER_REASONS}
        self.skipped = False
        self.final = False
        self.rotation_forced = False
        self.rotation_original = 0.0
        self.render_opacity = 1.0
        self.range_part = ""
        self.capture_source = ""
        self.stack_ids = ()

    def reason(self, token: str):
        if token not in self.reasons:
            self.reasons.append(token)

    def set_flag(self, name: str):
        self.flags[name] = True
        self.reason(MODIFIER_REASONS[name])

    def force_in_place(self, token: str):
        self.mode = IN_PLACE
        self.reason(token)

    def skip(self, token: str):
        self.skipped = True
        self.final = True
        self.reason(token)


@dataclass(frozen=True)
class Rule:
    name: str
    applies: Callable[[DecisionContext, Decision], bool]
    apply: Callable[[DecisionContext, Decision], None]


# ============================================================
# GEOMETRY / STYLE PREDICATES
# ============================================================

def composition_effects(node: AnalysisNode) -> tuple:
    s = node.style
    kinds = []
    if s.overflow_x not in ("visible", "") or s.overflow_y not in ("visible", ""):
        kinds.append("overflow")
    if is_set(s.clip_path):
        kinds.append("clip-path")
    if is_set(s.mask) or is_set(s.mask_image):
        kinds.append("mask")
    if is_set(s.backdrop_filter):
        kinds.append("backdrop-filter")
    if s.mix_blend_mode not in ("normal", ""):
        kinds.append("blend-mode")
    return tuple(kinds)


def is_interactive(node: AnalysisNode) -> bool:
    if node.tag_name in INTERACTIVE_TAGS:
        return True
    if node.role.lower() in INTERACTIVE_ROLES:
        return True
    return bool(node.attr("href") or node.attr("data-action"))


def is_capturable(node: AnalysisNode) -> bool:
    if node.is_root or node.synthesized == "text":
        return False
    if node.type == IMAGE:
        return True
    return node.type == CONTAINER and node.has_visual


def not_capturable_reason(node: AnalysisNode) -> str:
    if node.synthesized == "text" or node.type not in (IMAGE, CONTAINER):
        return "skip:not-capturable:text"
    return "skip:not-capturable:container-without-paint"


def crosses_rounded_corner(rect: Rect, clip: Rect, radii: tuple) -> bool:
    """True when part of `rect` lies in a corner region the rounded clip cuts away."""
    tl, tr, br, bl = radii
    corners = (
        (tl, clip.x, clip.y, 1, 1),
        (tr, clip.right, clip.y, -1, 1),
        (br, clip.right, clip.bottom, -1, -1),
        (bl, clip.x, clip.bottom, 1, -1),
    )
    for radius, cx, cy, sx, sy in corners:
        if radius <= ROUNDED_RADIUS_MIN:
            continue
        # Point of rect nearest to the clip corner, limited to the clip box.
        px = max(rect.x, clip.x) if sx > 0 else min(rect.right, clip.right)
        py = max(rect.y, clip.y) if sy > 0 else min(rect.bottom, clip.bottom)
        in_corner_box = (px - cx) * sx < radius and (py - cy) * sy < radius
        if not in_corner_box:
            continue
        center_x = cx + sx * radius
        center_y = cy + sy * radius
        if math.hypot(px - center_x, py - center_y) > radius + 0.5:
            return True
    return False


def visible_ratio(rect: Rect, bounds: Rect) -> float:
    if rect.area <= 0:
        return 0.0
    overlap = rect.intersect(bounds)
    return overlap.area / rect.area if overlap else 0.0


def find_background_stack(parent: AnalysisNode, viewport: Rect, dpr: float):
    """(base, overlays) among parent's children, or None."""
    tolerance = max(1.0, dpr)
    viewport_area = max(1.0, viewport.area)
    children = [c for c in parent.children if not c.synthesized]

    for index, base in enumerate(children):
        if not _stack_eligible(base):
            continue
        covered = base.rect.intersect(viewport)
        if not covered or covered.area / viewport_area < STACK_BASE_MIN_COVERAGE:
            continue
        alpha = color_alpha(base.style.background_color)
        translucent = 0 < alpha < 1 or base.style.opacity < 1
        if not translucent:
            continue
        anchored = abs(base.rect.x - parent.rect.x) <= tolerance and abs(base.rect.y - parent.rect.y) <= tolerance
        if not anchored:
            continue

        overlays = []
        for other in children[index + 1:]:
            if not _stack_eligible(other):
                continue
            overlap = other.rect.intersect(base.rect)
            if overlap and overlap.area / max(1.0, base.rect.area) >= STACK_OVERLAY_MIN_OVERLAP:
                overlays.append(other)
        if overlays:
            return base, overlays
    return None


def _stack_eligible(node: AnalysisNode) -> bool:
    paints = node.has_visual or node.is_atomic_visual
    return (
        paints
        and node.type in (IMAGE, CONTAINER)
        and not composition_effects(node)
        and abs(node.rotation) <= ROTATION_EPSILON
    )


# ============================================================
# RULES
# ============================================================

def _is_offscreen_state_layer(ctx, d):
    node = ctx.node
    return (
        ctx.visible_ratio <= STATE_LAYER_MAX_VISIBLE
        and has_state_class_hint(node.classes)
        and not node.text.strip()
        and not node.has_own_text
        and not is_interactive(node)
    )


def _skip_state_layer(ctx, d):
    d.skip("skip:offscreen-state-layer")


def _capture_kind(ctx, d):
    d.reason("capture:image" if ctx.node.type == IMAGE else "capture:container-paint")
    d.render_opacity = 1.0


def _is_range_part(ctx, d):
    return ctx.node.range_part is not None


def _range_part(ctx, d):
    d.mode = RANGE_PART
    d.range_part = ctx.node.range_part.part
    d.capture_source = ctx.node.source_id
    d.reason(f"range-part:{d.range_part}")
    d.final = True


def _is_stack_base(ctx, d):
    return bool(ctx.stack_overlays)


def _background_stack(ctx, d):
    d.mode = BACKGROUND_STACK
    d.stack_ids = ctx.stack_overlays
    d.reason("background-stack-composite")
    d.final = True


def _has_self_effect(ctx, d):
    return bool(ctx.self_effects)


def _self_effect(ctx, d):
    for kind in ctx.self_effects:
        d.force_in_place(f"composition-effect:{kind}")


def _has_ancestor_effect(ctx, d):
    return bool(ctx.ancestor_effect)


def _ancestor_effect(ctx, d):
    d.force_in_place(f"ancestor-composition-effect:{ctx.ancestor_effect}")


def _can_decouple_opacity(ctx, d):
    node = ctx.node
    return node.is_atomic_visual and node.style.opacity < 1 and not ctx.self_effects and not ctx.ancestor_effect


def _decouple_opacity(ctx, d):
    d.set_flag("decouple_opacity")
    d.render_opacity = round(max(0.0, min(1.0, ctx.node.style.opacity)), 6)


def _has_clip(ctx, d):
    return ctx.clip is not None


def _clip_context(ctx, d):
    clip = ctx.clip
    rect = ctx.node.rect
    if not ctx.clip_inside:
        d.force_in_place(f"ancestor-clip-outside:{clip.token}")
    if clip.rounded and (not ctx.clip_inside or crosses_rounded_corner(rect, clip.rect, clip.radii)):
        d.force_in_place(f"ancestor-rounded-clip:{clip.token}")
    if clip.rounded and ctx.outpaint > 0:
        painted = rect.inflate(ctx.outpaint)
        if not clip.rect.contains(painted) or crosses_rounded_corner(painted, clip.rect, clip.radii):
            d.force_in_place(f"outpaint-near-rounded-clip:{clip.token}")


def _is_low_alpha_context(ctx, d):
    node = ctx.node
    if node.type != CONTAINER or ctx.self_effects or ctx.ancestor_effect:
        return False
    if has_background_image(node.style.background_image):
        return False
    alpha = color_alpha(node.style.background_color)
    if not 0 < alpha <= LOW_ALPHA_MAX:
        return False
    area_ratio = node.rect.area / max(1.0, ctx.viewport.area)
    return LOW_ALPHA_MIN_AREA <= area_ratio <= LOW_ALPHA_MAX_AREA and not is_interactive(node)


def _low_alpha_context(ctx, d):
    d.force_in_place("low-alpha-context")
    d.set_flag("preserve_scene_underlay")
    style = ctx.node.style
    if style.border_width > 0 and color_alpha(style.border_color) <= FAINT_BORDER_MAX_ALPHA:
        d.set_flag("suppress_underlay_faint_border")


def _has_rotation(ctx, d):
    return ctx.has_self_rotation or ctx.has_ancestor_rotation


def _rotation(ctx, d):
    total = ctx.ancestor_rotation + ctx.self_rotation
    d.rotation_original = round(total, 4) + 0.0
    if ctx.has_self_rotation:
        d.reason("self-rotation")
    if not ctx.bake_rotation:
        d.set_flag("neutralize_transforms")
        return
    d.mode = IN_PLACE
    d.rotation_forced = True
    if not ctx.has_self_rotation:
        d.set_flag("ancestor_rotation_context")
    d.set_flag("rotation_baked")


def _is_icon_glyph(ctx, d):
    return ctx.node.is_icon_glyph and not d.rotation_forced


def _icon_glyph(ctx, d):
    d.mode = CLONE
    d.reason("icon-glyph-context-exception")


def _needs_hide_children(ctx, d):
    node = ctx.node
    return (
        not node.is_atomic_visual
        and any(child.synthesized != "text" for child in node.children)
    )


def _hide_children(ctx, d):
    d.set_flag("hide_children")


def _needs_hide_own_text(ctx, d):
    return ctx.node.has_own_text and not d.flags["hide_children"]


def _hide_own_text(ctx, d):
    d.set_flag("hide_own_text")
    if d.mode == IN_PLACE:
        d.set_flag("preserve_own_text_geometry")


def _needs_ancestor_paint_suppression(ctx, d):
    return (
        d.mode == IN_PLACE
        and not ctx.self_effects
        and not ctx.ancestor_effect
        and not d.flags["preserve_scene_underlay"]
    )


def _suppress_ancestor_paint(ctx, d):
    d.set_flag("suppress_ancestor_paint")


def _always(ctx, d):
    return True


RULES = (
    Rule("offscreen-state-layer", _is_offscreen_state_layer, _skip_state_layer),
    Rule("capture-kind", _always, _capture_kind),
    Rule("range-part", _is_range_part, _range_part),
    Rule("background-stack", _is_stack_base, _background_stack),
    Rule("composition-effect", _has_self_effect, _self_effect),
    Rule("ancestor-composition-effect", _has_ancestor_effect, _ancestor_effect),
    Rule("decouple-opacity", _can_decouple_opacity, _decouple_opacity),
    Rule("clip-context", _has_clip, _clip_context),
    Rule("low-alpha-context", _is_low_alpha_context, _low_alpha_context),
    Rule("rotation", _has_rotation, _rotation),
    Rule("icon-glyph", _is_icon_glyph, _icon_glyph),
    Rule("hide-children", _needs_hide_children, _hide_children),
    Rule("hide-own-text", _needs_hide_own_text, _hide_own_text),
    Rule("suppress-ancestor-paint", _needs_ancestor_paint_suppression, _suppress_ancestor_paint),
)


def evaluate(ctx: DecisionContext, rules=RULES) -> Decision:
    decision = Decision()
    for rule in rules:
        if decision.final:
            break
        if rule.applies(ctx, decision):
            rule.apply(ctx, decision)
    if not decision.reasons:
        decision.reason(DEFAULT_REASON)
    return decision


# ============================================================
# PLANNER
# ============================================================

@dataclass
class PlanResult:
    tasks: list = field(default_factory=list)
    trace: list = field(default_factory=list)
    suppressed: dict = field(default_factory=dict)   # node id → base id

    def task_for(self, node_id: str) -> Optional[CaptureTask]:
        for task in self.tasks:
            if task.node_id == node_id:
                return task
        return None


@dataclass(frozen=True)
class _Frame:
    node: AnalysisNode
    depth: int
    clips: tuple
    ancestor_rotation: float
    ancestor_effect: str
    suppressed_by: str


class Planner:
    def __init__(self, bake_rotation: bool = True):
        self.bake_rotation = bake_rotation

    def plan(self, tree: AnalysisTree) -> PlanResult:
        result = PlanResult()
        stack_bases = {}
        ordinal = 0

        frames = [_Frame(tree.root, 0, (), 0.0, "", "")]
        while frames:
            frame = frames.pop()
            node = frame.node
            clip = frame.clips[-1] if frame.clips else None
            bounds = clip.rect if clip else tree.viewport
            self_effects = composition_effects(node)

            if frame.depth < STACK_MAX_DEPTH and not frame.suppressed_by:
                found = find_background_stack(node, tree.viewport, tree.dpr)
                if found:
                    base, overlays = found
                    stack_bases[base.id] = tuple(o.id for o in overlays)
                    for overlay in overlays:
                        result.suppressed[overlay.id] = base.id

            if node.is_root:
                result.trace.append(self._record(node, "skip", ("root-canvas-background",), clip=None, outcome="skipped"))
            elif frame.suppressed_by:
                result.suppressed.setdefault(node.id, frame.suppressed_by)
                token = f"suppressed-by-background-stack:{frame.suppressed_by}"
                result.trace.append(self._record(node, "skip", (token,), clip=None, outcome="skipped"))
            elif not is_capturable(node):
                result.trace.append(
                    self._record(node, "skip", (not_capturable_reason(node),), clip=None, outcome="skipped")
                )
            else:
                ctx = DecisionContext(
                    node=node,
                    depth=frame.depth,
                    viewport=tree.viewport,
                    dpr=tree.dpr,
                    bake_rotation=self.bake_rotation,
                    clip=clip,
                    clip_inside=clip.rect.contains(node.rect, tolerance=max(0.5, tree.dpr * 0.5)) if clip else True,
                    visible_ratio=visible_ratio(node.rect, bounds),
                    ancestor_rotation=frame.ancestor_rotation,
                    ancestor_effect=frame.ancestor_effect,
                    self_effects=self_effects,
                    outpaint=filter_pad(node.style.filter) * tree.dpr,
                    stack_overlays=stack_bases.get(node.id, ()),
                )
                decision = evaluate(ctx)
                summary = self._clip_summary(ctx)
                if decision.skipped:
                    result.trace.append(self._record(
                        node, "skip", tuple(decision.reasons), clip=summary, outcome="skipped"
                    ))
                else:
                    ordinal += 1
                    task = self._task(node, decision, ordinal)
                    result.tasks.append(task)
                    result.trace.append(self._record(
                        node, "capture", task.reasons, clip=summary, task=task
                    ))

            # Child state
            child_clips = frame.clips
            if any(kind == "overflow" for kind in self_effects):
                child_clips = child_clips + (ClipEntry(node.id, node.tag_name, node.rect, node.style.radii),)
            child_effect = frame.ancestor_effect or next((k for k in self_effects if k != "overflow"), "")
            child_rotation = frame.ancestor_rotation + (0.0 if node.is_root else node.rotation)
            for child in reversed(node.children):
                suppressed_by = frame.suppressed_by or result.suppressed.get(child.id, "")
                frames.append(_Frame(child, frame.depth + 1, child_clips, child_rotation, child_effect, suppressed_by))

        print(
            f"[planner] {len(result.tasks)} tasks, {len(result.trace)} trace records, "
            f"{len(result.suppressed)} suppressed"
        )
        return result

    @staticmethod
    def _task(node: AnalysisNode, d: Decision, ordinal: int) -> CaptureTask:
        output_name = f"{ordinal:04d}_{sanitize_name_part(node.html_tag, 'html', 64)}"
        return CaptureTask(
            id=f"task-{ordinal:04d}",
            node_id=node.id,
            output_name=output_name,
            mode=d.mode,
            reasons=tuple(d.reasons),
            capture_source_node_id=d.capture_source or node.id,
            rotation_original=d.rotation_original,
            render_opacity=d.render_opacity,
            range_part=d.range_part,
            background_stack_node_ids=d.stack_ids,
            **d.flags,
        )

    @staticmethod
    def _clip_summary(ctx: DecisionContext) -> Optional[ClipSummary]:
        if ctx.clip is None:
            return None
        return ClipSummary(
            node_id=ctx.clip.node_id,
            tag=ctx.clip.tag,
            rect=ctx.clip.rect,
            rounded=ctx.clip.rounded,
            inside=ctx.clip_inside,
            visible_ratio=round(ctx.visible_ratio, 4),
        )

    @staticmethod
    def _record(node, decision, reasons, clip, task=None, outcome="planned") -> RuleTraceRecord:
        flags = {}
        if task is not None:
            flags = {name: getattr(task, name) for name in MODIFIER_REASONS}
        return RuleTraceRecord(
            node_id=node.id,
            tag=node.tag_name,
            dom_path=node.dom_path,
            node_type=node.type,
            decision=decision,
            reasons=tuple(reasons),
            mode=task.mode if task else "",
            output_name=task.output_name if task else "",
            clip_ancestor=clip,
            outcome=outcome,
            **flags,
        )
