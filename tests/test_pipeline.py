import json

from conftest import make_node, make_tree
from htmlbake import rules_check
from htmlbake.models import IMAGE, CaptureFailure, CaptureMetadata
from htmlbake.pipeline import apply_outcomes, write_debug_dump
from htmlbake.planner import Planner


def two_image_plan():
    first = make_node(IMAGE, rect=(0, 0, 20, 20), tag="IMG", has_visual=True)
    second = make_node(IMAGE, rect=(40, 0, 20, 20), tag="IMG", has_visual=True)
    tree = make_tree(first, second)
    return tree, Planner().plan(tree), first, second


def captured(name):
    return CaptureMetadata(
        mode="clone", output_name=name, image_width=40, image_height=40,
        content_offset_x=0, content_offset_y=0, content_width=40, content_height=40,
    )


def test_outcomes_follow_execution():
    tree, plan, first, second = two_image_plan()
    trace = apply_outcomes(
        plan.trace,
        {first.id: captured("0001_img")},
        [CaptureFailure(second.id, "0002_img", "vanished: missing")],
    )
    outcomes = {r.node_id: r.outcome for r in trace}
    assert outcomes["root"] == "skipped"
    assert outcomes[first.id] == "captured"
    assert outcomes[second.id] == "failed:vanished: missing"
    # input trace untouched
    assert all(r.outcome != "captured" for r in plan.trace)


def test_debug_dump_round_trips_through_rules_check(tmp_path):
    tree, plan, first, _ = two_image_plan()
    captures = {first.id: captured("0001_img")}
    write_debug_dump(str(tmp_path), tree, plan.tasks, plan.trace, captures)

    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == ["analysis_tree.json", "bake_plan.json", "capture_meta.json", "rules_trace.json"]

    analysis = json.loads((tmp_path / "analysis_tree.json").read_text())
    assert analysis["root"]["isRoot"] is True
    assert len(analysis["root"]["children"]) == 2

    plan_json = json.loads((tmp_path / "bake_plan.json").read_text())
    assert plan_json[0]["outputName"] == "0001_img"
    assert plan_json[0]["reasons"] == ["capture:image"]

    meta_json = json.loads((tmp_path / "capture_meta.json").read_text())
    assert meta_json[first.id]["imageWidth"] == 40

    assert rules_check.main([str(tmp_path)]) == 0
