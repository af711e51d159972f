import pytest

from conftest import make_node, make_tree
from htmlbake.models import (
    BACKGROUND_STACK,
    CLONE,
    CONTAINER,
    IMAGE,
    IN_PLACE,
    MODIFIER_REASONS,
    TEXT,
    ComputedStyle,
    Rect,
    walk,
)
from htmlbake.planner import Planner, crosses_rounded_corner, find_background_stack
from htmlbake.rules_check import validate

CLIPPING = dict(overflow="hidden", overflow_x="hidden", overflow_y="hidden")


def clip_tree():
    child = make_node(IMAGE, rect=(90, 10, 40, 20), tag="IMG", has_visual=True)
    parent = make_node(
        CONTAINER,
        rect=(10, 10, 100, 50),
        has_visual=True,
        children=[child],
        style=ComputedStyle(background_color="rgb(255, 255, 255)", radii=(12.0, 12.0, 12.0, 12.0), **CLIPPING),
    )
    return make_tree(parent), parent, child


def rotation_tree():
    child = make_node(IMAGE, rect=(40, 40, 60, 60), tag="IMG", has_visual=True, rotation=30.0)
    parent = make_node(
        CONTAINER,
        rect=(20, 20, 200, 200),
        has_visual=True,
        rotation=15.0,
        children=[child],
        style=ComputedStyle(background_color="rgb(200, 0, 0)"),
    )
    return make_tree(parent), parent, child


def stack_tree():
    base = make_node(
        IMAGE,
        rect=(0, 0, 375, 812),
        has_visual=True,
        style=ComputedStyle(background_color="rgba(0, 0, 0, 0.4)"),
    )
    pattern = make_node(
        IMAGE,
        rect=(0, 0, 375, 812 * 0.95),
        has_visual=True,
        style=ComputedStyle(background_image='url("dots.png")'),
    )
    return make_tree(base, pattern), base, pattern


def test_clipped_child_is_captured_in_place():
    tree, parent, child = clip_tree()
    plan = Planner().plan(tree)

    task = plan.task_for(child.id)
    assert task.mode == IN_PLACE
    assert any(r.startswith(("ancestor-clip-outside:", "ancestor-rounded-clip:")) for r in task.reasons)
    assert f"ancestor-clip-outside:div:{parent.id}" in task.reasons

    record = next(r for r in plan.trace if r.node_id == child.id)
    assert record.clip_ancestor.node_id == parent.id
    assert record.clip_ancestor.rounded
    assert not record.clip_ancestor.inside
    assert record.clip_ancestor.visible_ratio == pytest.approx(0.5)


def test_clipping_parent_hides_children_in_its_own_capture():
    tree, parent, _ = clip_tree()
    task = Planner().plan(tree).task_for(parent.id)
    assert task.mode == IN_PLACE
    assert "composition-effect:overflow" in task.reasons
    assert task.hide_children and "hide-children" in task.reasons


def test_translucent_image_decouples_opacity():
    img = make_node(IMAGE, rect=(20, 20, 100, 100), tag="IMG", has_visual=True, style=ComputedStyle(opacity=0.5))
    task = Planner().plan(make_tree(img)).task_for(img.id)
    assert task.mode == CLONE
    assert task.decouple_opacity
    assert task.render_opacity == pytest.approx(0.5)
    assert "decouple-opacity" in task.reasons


def test_full_bleed_translucent_siblings_become_one_background_stack():
    tree, base, pattern = stack_tree()
    plan = Planner().plan(tree)

    assert len(plan.tasks) == 1
    task = plan.tasks[0]
    assert task.node_id == base.id
    assert task.mode == BACKGROUND_STACK
    assert task.background_stack_node_ids == (pattern.id,)
    assert "background-stack-composite" in task.reasons

    assert plan.task_for(pattern.id) is None
    assert plan.suppressed[pattern.id] == base.id
    record = next(r for r in plan.trace if r.node_id == pattern.id)
    assert record.decision == "skip"
    assert record.reasons == (f"suppressed-by-background-stack:{base.id}",)


def test_background_stack_needs_translucent_base():
    _, base, pattern = stack_tree()
    opaque = make_node(IMAGE, rect=(0, 0, 375, 812), has_visual=True, style=ComputedStyle(background_color="#fff"))
    tree = make_tree(opaque, pattern)
    assert find_background_stack(tree.root, tree.viewport, tree.dpr) is None


def test_rotation_accumulates_and_bakes_in_place():
    tree, parent, child = rotation_tree()
    task = Planner(bake_rotation=True).plan(tree).task_for(child.id)
    assert task.mode == IN_PLACE
    assert task.rotation_baked
    assert task.rotation_original == pytest.approx(45.0)
    assert "self-rotation" in task.reasons
    assert "rotation-baked" in task.reasons


def test_ancestor_only_rotation_marks_context():
    child = make_node(IMAGE, rect=(40, 40, 60, 60), tag="IMG", has_visual=True)
    parent = make_node(CONTAINER, rect=(20, 20, 200, 200), rotation=10.0, children=[child])
    task = Planner().plan(make_tree(parent)).task_for(child.id)
    assert task.ancestor_rotation_context
    assert "ancestor-rotation-context" in task.reasons
    assert task.rotation_original == pytest.approx(10.0)


def test_rotation_neutralized_when_not_baking():
    tree, _, child = rotation_tree()
    task = Planner(bake_rotation=False).plan(tree).task_for(child.id)
    assert task.mode == CLONE
    assert not task.rotation_baked
    assert task.neutralize_transforms
    assert "neutralize-transforms" in task.reasons
    assert task.rotation_original == pytest.approx(45.0)


def test_offscreen_state_layer_is_skipped():
    layer = make_node(IMAGE, rect=(500, 0, 50, 50), has_visual=True, classes=("hover:bg-black/5",))
    plan = Planner().plan(make_tree(layer))
    assert plan.tasks == []
    record = next(r for r in plan.trace if r.node_id == layer.id)
    assert record.reasons == ("skip:offscreen-state-layer",)


def test_offscreen_interactive_element_is_still_captured():
    button = make_node(IMAGE, rect=(500, 0, 50, 50), tag="BUTTON", has_visual=True, classes=("hover:opacity-80",))
    assert Planner().plan(make_tree(button)).task_for(button.id) is not None


def test_low_alpha_panel_keeps_scene_underlay():
    panel = make_node(
        CONTAINER,
        rect=(20, 100, 200, 100),
        has_visual=True,
        style=ComputedStyle(
            background_color="rgba(255, 255, 255, 0.08)",
            border_width=1.0,
            border_color="rgba(255, 255, 255, 0.1)",
        ),
    )
    task = Planner().plan(make_tree(panel)).task_for(panel.id)
    assert task.mode == IN_PLACE
    assert "low-alpha-context" in task.reasons
    assert task.preserve_scene_underlay
    assert task.suppress_underlay_faint_border
    assert not task.suppress_ancestor_paint


def test_icon_glyph_stays_clone_despite_clip():
    icon = make_node(IMAGE, rect=(100, 20, 30, 30), tag="SPAN", has_visual=True, is_icon_glyph=True)
    holder = make_node(CONTAINER, rect=(10, 10, 100, 50), children=[icon], style=ComputedStyle(**CLIPPING))
    plan = Planner().plan(make_tree(holder))
    task = plan.task_for(icon.id)
    assert task.mode == CLONE
    assert "icon-glyph-context-exception" in task.reasons
    issues, warnings = validate(plan.tasks, plan.trace)
    assert issues == [] and warnings == []


def test_button_with_label_hides_own_text():
    label = make_node(TEXT, rect=(30, 30, 40, 12), tag="#TEXT", synthesized="text", text="Go")
    button = make_node(
        CONTAINER,
        rect=(20, 20, 80, 30),
        tag="BUTTON",
        has_visual=True,
        has_own_text=True,
        children=[label],
        style=ComputedStyle(background_color="rgb(0, 120, 255)"),
    )
    plan = Planner().plan(make_tree(button))
    task = plan.task_for(button.id)
    assert task.hide_own_text and "hide-own-direct-text" in task.reasons
    assert not task.hide_children
    assert not task.preserve_own_text_geometry
    text_record = next(r for r in plan.trace if r.node_id == label.id)
    assert text_record.reasons == ("skip:not-capturable:text",)


def test_unpainted_container_is_skipped_but_children_visited():
    img = make_node(IMAGE, rect=(0, 0, 20, 20), tag="IMG", has_visual=True)
    wrapper = make_node(CONTAINER, rect=(0, 0, 100, 100), children=[img])
    plan = Planner().plan(make_tree(wrapper))
    assert [t.node_id for t in plan.tasks] == [img.id]
    record = next(r for r in plan.trace if r.node_id == wrapper.id)
    assert record.reasons == ("skip:not-capturable:container-without-paint",)


def test_root_record_and_output_names():
    img = make_node(IMAGE, rect=(0, 0, 20, 20), tag="IMG", html_tag="img", has_visual=True)
    plan = Planner().plan(make_tree(img))
    assert plan.trace[0].node_id == "root"
    assert plan.trace[0].reasons == ("root-canvas-background",)
    assert plan.tasks[0].id == "task-0001"
    assert plan.tasks[0].output_name == "0001_img"
    assert plan.tasks[0].image_path == "images/0001_img.png"


@pytest.mark.parametrize("build", [clip_tree, rotation_tree, stack_tree])
def test_plan_invariants(build):
    tree = build()[0]
    plan = Planner().plan(tree)

    assert len(plan.trace) == sum(1 for _ in walk(tree.root))
    assert [r.node_id for r in plan.trace] == [n.id for n in walk(tree.root)]
    for task in plan.tasks:
        assert task.reasons
        if task.rotation_baked:
            assert task.mode == IN_PLACE
        for name, token in MODIFIER_REASONS.items():
            if getattr(task, name):
                assert token in task.reasons
    assert validate(plan.tasks, plan.trace)[0] == []


@pytest.mark.parametrize("build", [clip_tree, rotation_tree, stack_tree])
def test_planning_is_idempotent(build):
    tree = build()[0]
    first = Planner().plan(tree)
    second = Planner().plan(tree)
    assert first.tasks == second.tasks
    assert first.trace == second.trace


def test_rounded_corner_crossing():
    clip = Rect(0, 0, 100, 100)
    radii = (20.0, 20.0, 20.0, 20.0)
    assert crosses_rounded_corner(Rect(0, 0, 10, 10), clip, radii)
    assert not crosses_rounded_corner(Rect(30, 30, 40, 40), clip, radii)
    assert not crosses_rounded_corner(Rect(0, 0, 10, 10), clip, (0.0, 0.0, 0.0, 0.0))


def rounded_holder(child):
    return make_node(
        CONTAINER,
        rect=(10, 10, 100, 50),
        has_visual=True,
        children=[child],
        style=ComputedStyle(background_color="rgb(255, 255, 255)", radii=(12.0, 12.0, 12.0, 12.0), **CLIPPING),
    )


def test_blur_near_rounded_clip_forces_in_place():
    child = make_node(IMAGE, rect=(40, 20, 30, 20), tag="IMG", has_visual=True, style=ComputedStyle(filter="blur(8px)"))
    parent = rounded_holder(child)
    task = Planner().plan(make_tree(parent)).task_for(child.id)
    assert task.mode == IN_PLACE
    assert f"outpaint-near-rounded-clip:div:{parent.id}" in task.reasons
    assert not any(r.startswith(("ancestor-clip-outside:", "ancestor-rounded-clip:")) for r in task.reasons)


def test_box_shadow_alone_does_not_count_as_outpaint():
    shadow = ComputedStyle(box_shadow="rgba(0, 0, 0, 0.5) 0px 0px 20px 0px")
    child = make_node(IMAGE, rect=(40, 20, 30, 20), tag="IMG", has_visual=True, style=shadow)
    task = Planner().plan(make_tree(rounded_holder(child))).task_for(child.id)
    assert task.mode == CLONE
    assert not any(r.startswith("outpaint-near-rounded-clip:") for r in task.reasons)


def test_ancestor_paint_suppressed_for_clip_and_rotation_captures():
    tree, _, child = clip_tree()
    task = Planner().plan(tree).task_for(child.id)
    assert task.suppress_ancestor_paint and "suppress-ancestor-paint" in task.reasons

    tree, _, child = rotation_tree()
    task = Planner().plan(tree).task_for(child.id)
    assert task.rotation_baked
    assert task.suppress_ancestor_paint


def test_own_composition_effect_keeps_ancestor_paint():
    tree, parent, _ = clip_tree()
    assert not Planner().plan(tree).task_for(parent.id).suppress_ancestor_paint

    blended = make_node(
        IMAGE, rect=(20, 20, 50, 50), tag="IMG", has_visual=True, style=ComputedStyle(mix_blend_mode="multiply"),
    )
    task = Planner().plan(make_tree(blended)).task_for(blended.id)
    assert task.mode == IN_PLACE
    assert "composition-effect:blend-mode" in task.reasons
    assert not task.suppress_ancestor_paint


def test_low_alpha_panel_under_blend_ancestor_has_no_underlay():
    panel = make_node(
        CONTAINER,
        rect=(20, 100, 200, 100),
        has_visual=True,
        style=ComputedStyle(background_color="rgba(255, 255, 255, 0.08)"),
    )
    backdrop = make_node(
        CONTAINER,
        rect=(0, 100, 375, 300),
        has_visual=True,
        children=[panel],
        style=ComputedStyle(background_color="rgb(20, 20, 20)", mix_blend_mode="screen"),
    )
    task = Planner().plan(make_tree(backdrop)).task_for(panel.id)
    assert task.mode == IN_PLACE
    assert "ancestor-composition-effect:blend-mode" in task.reasons
    assert "low-alpha-context" not in task.reasons
    assert not task.preserve_scene_underlay


def test_icon_glyph_with_element_children_hides_them():
    badge = make_node(IMAGE, rect=(30, 10, 8, 8), tag="IMG", has_visual=True)
    icon = make_node(
        IMAGE, rect=(10, 10, 30, 30), tag="SPAN", has_visual=True, is_icon_glyph=True, has_own_text=True,
        children=[badge],
    )
    plan = Planner().plan(make_tree(icon))
    task = plan.task_for(icon.id)
    assert task.mode == CLONE
    assert task.hide_children and "hide-children" in task.reasons
    assert plan.task_for(badge.id) is not None
    assert validate(plan.tasks, plan.trace) == ([], [])
