"""
Assembler: Analysis Tree + capture metadata → Layout Tree.

The layout tree is the file contract read by downstream asset generators,
so its field names are camelCase and only ever grow.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from htmlbake.config import Resolution
from htmlbake.css import parse_float
from htmlbake.models import AnalysisNode, AnalysisTree, CaptureMetadata, CaptureTask, Rect, RuleTraceRecord

BACKGROUND_IMAGE_PATH = "images/bg.png"


class LayoutModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LayoutRect(LayoutModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def of(cls, rect: Rect) -> "LayoutRect":
        return cls(x=rect.x, y=rect.y, width=rect.width, height=rect.height)


class LayoutAttribute(LayoutModel):
    key: str
    value: str


class LayoutTextStyle(LayoutModel):
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


class LayoutCaptureInfo(LayoutModel):
    mode: str = ""
    image_width: float = 0.0
    image_height: float = 0.0
    content_offset_x: float = 0.0
    content_offset_y: float = 0.0
    content_width: float = 0.0
    content_height: float = 0.0
    visibility_ratio: float = 1.0
    rotation_neutralized: bool = False
    opacity_decoupled: bool = False
    render_opacity: float = 1.0


class LayoutNode(LayoutModel):
    id: str
    type: str
    tag_name: str = ""
    html_tag: str = ""
    z_index: int = 0
    role: str = ""
    input_type: str = ""
    classes: List[str] = []
    attrs: List[LayoutAttribute] = []
    dom_path: str = ""
    rect: LayoutRect
    content_bounds: Optional[LayoutRect] = None
    rotation: float = 0.0
    transform_neutralized: bool = False
    neutralized_ancestor_count: int = 0
    opacity: float = 1.0
    image_path: Optional[str] = None
    capture: Optional[LayoutCaptureInfo] = None
    rotation_baked: bool = False
    rotation_original: float = 0.0
    text: str = ""
    style: Optional[LayoutTextStyle] = None
    children: List["LayoutNode"] = []

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


def _z_index(value: str) -> int:
    return int(parse_float(value, 0.0))


def content_bounds(node: LayoutNode) -> LayoutRect:
    """
    Fill `contentBounds` for `node` and every descendant, bottom-up.

    A node's bounds are the union of all descendant rects (its own rect is
    excluded); a childless node, or one whose descendants are all empty,
    gets a copy of its own rect. Explicit post-order, no recursion.
    """
    stack = [(node, False)]
    unions = {}
    while stack:
        current, expanded = stack.pop()
        if not expanded:
            stack.append((current, True))
            for child in reversed(current.children):
                stack.append((child, False))
            continue

        bounds = None
        for child in current.children:
            for candidate in (child.rect, unions.get(id(child))):
                if candidate is None or candidate.width <= 0 or candidate.height <= 0:
                    continue
                rect = Rect(candidate.x, candidate.y, candidate.width, candidate.height)
                bounds = rect if bounds is None else bounds.union(rect)
        unions[id(current)] = LayoutRect.of(bounds) if bounds is not None else None

        if bounds is None:
            current.content_bounds = current.rect.model_copy()
        else:
            current.content_bounds = LayoutRect(
                x=bounds.x,
                y=bounds.y,
                width=max(1.0, bounds.width),
                height=max(1.0, bounds.height),
            )
    return node.content_bounds


class Assembler:
    def __init__(self, resolution: Resolution):
        self.resolution = resolution

    def assemble(
        self,
        tree: AnalysisTree,
        captures: Optional[dict] = None,
        tasks: Optional[List[CaptureTask]] = None,
        trace: Optional[List[RuleTraceRecord]] = None,
    ) -> LayoutNode:
        """
        `captures` maps node id → CaptureMetadata. Only nodes with metadata get
        an image reference; a plan with no captures still yields a full tree.
        """
        captures = captures or {}
        tasks_by_node = {task.node_id: task for task in (tasks or [])}
        ratios = {
            record.node_id: record.clip_ancestor.visible_ratio
            for record in (trace or [])
            if record.clip_ancestor is not None
        }

        # Pre-order with explicit stack; each frame carries the rotated-ancestor count.
        root_layout = None
        stack = [(tree.root, None, 0)]
        while stack:
            node, parent, rotated_ancestors = stack.pop()
            task = tasks_by_node.get(node.id)
            layout = self._layout_node(node, captures.get(node.id), task, ratios.get(node.id), rotated_ancestors)
            if parent is None:
                root_layout = layout
            else:
                parent.children.append(layout)
            below = rotated_ancestors + (1 if abs(node.rotation) > 0.01 and not node.is_root else 0)
            for child in reversed(node.children):
                stack.append((child, layout, below))

        root_layout.rect = LayoutRect(
            x=0.0,
            y=0.0,
            width=float(self.resolution.canvas_width),
            height=float(self.resolution.canvas_height),
        )
        root_layout.image_path = BACKGROUND_IMAGE_PATH
        content_bounds(root_layout)

        with_images = len(captures)
        print(f"[assembler] layout {root_layout.rect.width:.0f}x{root_layout.rect.height:.0f}, {with_images} images")
        return root_layout

    def _layout_node(
        self,
        node: AnalysisNode,
        meta: Optional[CaptureMetadata],
        task: Optional[CaptureTask],
        visible_ratio: Optional[float],
        rotated_ancestors: int,
    ) -> LayoutNode:
        neutralized = bool(task is not None and task.neutralize_transforms)
        baked = bool(meta is not None and meta.rotation_baked)

        capture = None
        image_path = None
        if meta is not None and meta.image_width > 0 and meta.image_height > 0:
            image_path = f"images/{meta.output_name}.png"
            capture = LayoutCaptureInfo(
                mode=meta.mode,
                image_width=meta.image_width,
                image_height=meta.image_height,
                content_offset_x=meta.content_offset_x,
                content_offset_y=meta.content_offset_y,
                content_width=max(0.0, meta.content_width),
                content_height=max(0.0, meta.content_height),
                visibility_ratio=1.0 if visible_ratio is None else visible_ratio,
                rotation_neutralized=neutralized,
                opacity_decoupled=meta.opacity_decoupled,
                render_opacity=meta.render_opacity,
            )

        style = None
        if node.text_style is not None:
            style = LayoutTextStyle(**vars(node.text_style))

        return LayoutNode(
            id=node.id,
            type=node.type,
            tag_name=node.tag_name,
            html_tag=node.html_tag,
            z_index=_z_index(node.style.z_index),
            role=node.role,
            input_type=node.input_type,
            classes=list(node.classes),
            attrs=[LayoutAttribute(key=k, value=v) for k, v in node.attrs],
            dom_path=node.dom_path,
            rect=LayoutRect.of(node.rect),
            # Baked pixels already carry the angle; the original is kept for reference.
            rotation=0.0 if baked else node.rotation,
            transform_neutralized=neutralized,
            neutralized_ancestor_count=rotated_ancestors if neutralized else 0,
            opacity=meta.render_opacity if meta is not None and meta.opacity_decoupled else 1.0,
            image_path=image_path,
            capture=capture,
            rotation_baked=baked,
            rotation_original=meta.rotation_original if meta is not None else node.rotation,
            text=node.text,
            style=style,
        )
