"""
Bake pipeline: Analyzer → Planner → Executor → Assembler.

Output layout:
    <output_dir>/layout.json
    <output_dir>/images/bg.png
    <output_dir>/images/<ordinal>_<tag>.png
    <output_dir>/debug/*.json          (debug mode only)
"""

import asyncio
import glob
import json
import os
from dataclasses import dataclass, field, replace
from typing import List, Optional

from htmlbake.analyzer import Analyzer
from htmlbake.assembler import BACKGROUND_IMAGE_PATH, Assembler, LayoutNode
from htmlbake.config import Settings, build_resolution, get_settings
from htmlbake.executor import Executor
from htmlbake.models import AnalysisTree, CaptureFailure, RuleTraceRecord, to_debug_dict, walk
from htmlbake.planner import Planner
from htmlbake.rules_check import report, validate
from htmlbake.session import RenderingSession


@dataclass
class BakeResult:
    output_dir: str
    layout_path: str
    images: List[str] = field(default_factory=list)
    failed: List[CaptureFailure] = field(default_factory=list)
    layout: Optional[LayoutNode] = None


def apply_outcomes(trace: List[RuleTraceRecord], captured: dict, failures: List[CaptureFailure]) -> list:
    """Trace with each planned record resolved to `captured` or `failed:<why>`."""
    failed = {f.node_id: f.reason for f in failures}
    updated = []
    for record in trace:
        if record.decision == "capture":
            if record.node_id in captured:
                record = replace(record, outcome="captured")
            elif record.node_id in failed:
                record = replace(record, outcome=f"failed:{failed[record.node_id]}")
        updated.append(record)
    return updated


def _write_json(path: str, data):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def write_debug_dump(debug_dir: str, tree: AnalysisTree, tasks: list, trace: list, captures: dict):
    _write_json(os.path.join(debug_dir, "analysis_tree.json"), to_debug_dict(tree))
    _write_json(os.path.join(debug_dir, "bake_plan.json"), [to_debug_dict(t) for t in tasks])
    _write_json(os.path.join(debug_dir, "rules_trace.json"), [to_debug_dict(r) for r in trace])
    _write_json(
        os.path.join(debug_dir, "capture_meta.json"),
        {node_id: to_debug_dict(meta) for node_id, meta in captures.items()},
    )
    print(f"[bake] debug dump → {debug_dir}")


def write_layout(path: str, layout: LayoutNode):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(layout.to_json())


def _clear_images(images_dir: str):
    # Only PNGs this pipeline writes; anything else in the folder is left alone.
    for path in glob.glob(os.path.join(images_dir, "*.png")):
        os.remove(path)


async def bake(target: str, settings: Optional[Settings] = None) -> BakeResult:
    settings = settings or get_settings()
    resolution = build_resolution(settings)
    output_dir = os.path.abspath(settings.output_dir)
    images_dir = os.path.join(output_dir, "images")
    layout_path = os.path.join(output_dir, "layout.json")
    print(
        f"[bake] {target} → {output_dir} "
        f"({resolution.mode}, {resolution.logical_width}x{resolution.logical_height} @ {resolution.dpr}x)"
    )

    async with RenderingSession(settings, resolution) as session:
        await session.open(target)
        page = session.page

        print("[bake] === Analyze ===")
        tree = await Analyzer(page, settings, resolution).run()
        content = await session.measure_content_size()
        print(f"[bake] content {content.get('width')}x{content.get('height')} css px")

        print("[bake] === Plan ===")
        plan = Planner(bake_rotation=settings.bake_rotation).plan(tree)

        print("[bake] === Capture ===")
        os.makedirs(images_dir, exist_ok=True)
        _clear_images(images_dir)
        executor = Executor(page, resolution, images_dir)
        execution = await executor.run(plan.tasks, {node.id: node for node in walk(tree.root)})
        await executor.capture_background(
            tree.origin_x,
            tree.origin_y,
            os.path.join(output_dir, BACKGROUND_IMAGE_PATH),
        )

    print("[bake] === Assemble ===")
    trace = apply_outcomes(plan.trace, execution.metadata, execution.failures)
    layout = Assembler(resolution).assemble(tree, execution.metadata, plan.tasks, trace)
    write_layout(layout_path, layout)

    if settings.debug:
        write_debug_dump(os.path.join(output_dir, "debug"), tree, plan.tasks, trace, execution.metadata)
        issues, warnings = validate(plan.tasks, trace)
        report(issues, warnings, len(plan.tasks), len(trace))

    images = [BACKGROUND_IMAGE_PATH] + [f"images/{meta.output_name}.png" for meta in execution.metadata.values()]
    print(f"[bake] done: {len(images)} images, {len(execution.failures)} failed → {layout_path}")
    return BakeResult(
        output_dir=output_dir,
        layout_path=layout_path,
        images=images,
        failed=list(execution.failures),
        layout=layout,
    )


def run_bake(target: str, settings: Optional[Settings] = None) -> BakeResult:
    return asyncio.run(bake(target, settings))
