"""Capture transactions against a real Chromium page. Skipped when no browser is installed."""

import asyncio
import functools
import os

import pytest
from playwright.async_api import async_playwright

from conftest import make_node
from htmlbake.executor import Executor
from htmlbake.models import BACKGROUND_STACK, CLONE, IMAGE, IN_PLACE, RANGE_PART, CaptureTask, RangePart
from htmlbake.session import RenderingSession

PAGE_HTML = """<!DOCTYPE html>
<html><head><style>
body { margin: 0; min-height: 1400px; background: rgb(240, 240, 240); font: 14px sans-serif; }
#card { position: absolute; left: 20px; top: 40px; width: 220px; height: 140px;
        background: rgb(255, 255, 255); border-radius: 12px; overflow: hidden; }
#chip { position: absolute; left: 20px; top: 20px; width: 60px; height: 30px;
        background: rgb(0, 120, 255); transform: rotate(20deg); }
#btn { position: absolute; left: 100px; top: 20px; width: 80px; height: 30px; }
#field { position: absolute; left: 20px; top: 80px; width: 150px; }
#slider { position: absolute; left: 20px; top: 220px; width: 200px; }
#stack-base, #stack-overlay { position: absolute; left: 0; top: 300px; width: 375px; height: 200px; }
#stack-base { background: rgba(0, 0, 0, 0.4); }
#stack-overlay { background: repeating-linear-gradient(45deg, rgba(255, 255, 255, 0.2) 0 4px, transparent 4px 8px); }
#far { position: absolute; left: 40px; top: 1000px; width: 100px; height: 60px; background: rgb(200, 0, 0); }
</style></head>
<body>
<div id="card" data-bake-id="card" style="color:red">
  <div id="chip" data-bake-id="chip"></div>
  <button id="btn" data-bake-id="btn">Go</button>
  <input id="field" data-bake-id="field" value="hello" placeholder="Name">
</div>
<input id="slider" data-bake-id="slider" type="range" min="0" max="100" value="25">
<div id="stack-base" data-bake-id="stack-base"></div>
<div id="stack-overlay" data-bake-id="stack-overlay"></div>
<div id="far" data-bake-id="far"></div>
</body></html>
"""

SNAPSHOT_JS = """() => ({
    html: document.documentElement.outerHTML,
    scroll: [window.scrollX, window.scrollY],
    values: Array.from(document.querySelectorAll('input')).map((el) => el.value),
})"""

# What the page looks like at the moment of the screenshot.
OBSERVE_JS = """() => {
    const css = (sel) => window.getComputedStyle(document.querySelector(sel));
    return {
        scrollY: window.scrollY,
        cardVisibility: css('#card').visibility,
        cardBackground: css('#card').backgroundColor,
        chipTransform: css('#chip').transform,
        buttonText: document.querySelector('#btn').textContent,
        fieldValue: document.querySelector('#field').value,
        clones: document.querySelectorAll('[data-bake-clone="true"]').length,
        sheets: document.querySelectorAll('#bake-isolation-style').length,
    };
}"""


@functools.lru_cache(maxsize=None)
def _launch_error() -> str:
    async def launch():
        async with async_playwright() as p:
            browser = await p.chromium.launch()
            await browser.close()

    try:
        asyncio.run(launch())
    except Exception as e:
        return str(e).splitlines()[0] if str(e) else type(e).__name__
    return ""


@pytest.fixture
def chromium():
    error = _launch_error()
    if error:
        pytest.skip(f"Chromium is not available: {error}")


class ObservingExecutor(Executor):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.seen = []

    async def _screenshot(self, path, clip, omit_background):
        self.seen.append(await self.page.evaluate(OBSERVE_JS))
        return await super()._screenshot(path, clip, omit_background)


def task(node_id, mode, **kwargs):
    return CaptureTask(id=f"task-{node_id}", node_id=node_id, output_name=f"0001_{node_id}", mode=mode,
                       reasons=("capture:image",), **kwargs)


async def _capture_on_page(settings, resolution, tmp_path, capture_task, node=None):
    page_path = tmp_path / "page.html"
    page_path.write_text(PAGE_HTML, encoding="utf-8")
    async with RenderingSession(settings, resolution) as session:
        await session.open(str(page_path))
        page = session.page
        await page.evaluate("(y) => window.scrollTo(0, y)", 150)
        before = await page.evaluate(SNAPSHOT_JS)
        viewport_before = dict(page.viewport_size)

        executor = ObservingExecutor(page, resolution, str(tmp_path / "images"))
        meta = await executor.capture(capture_task, node)

        after = await page.evaluate(SNAPSHOT_JS)
        viewport_after = dict(page.viewport_size)
    return {
        "before": before,
        "after": after,
        "viewport": (viewport_before, viewport_after),
        "seen": executor.seen[0],
        "meta": meta,
    }


def capture(settings, resolution, tmp_path, capture_task, node=None):
    return asyncio.run(_capture_on_page(settings, resolution, tmp_path, capture_task, node))


THUMB = make_node(IMAGE, id="slider-thumb", range_part=RangePart("thumb", 40.0, 0.0, 16.0, 16.0, ratio=0.25))

CASES = {
    "clone": (task("card", CLONE, hide_children=True), None),
    "in-place-clip": (task("chip", IN_PLACE, suppress_ancestor_paint=True, neutralize_transforms=True), None),
    "in-place-button-text": (task("btn", IN_PLACE, hide_own_text=True, preserve_own_text_geometry=True), None),
    "in-place-field-text": (task("field", IN_PLACE, hide_own_text=True), None),
    "range-thumb": (
        task("slider-thumb", RANGE_PART, range_part="thumb", capture_source_node_id="slider"), THUMB,
    ),
    "background-stack": (task("stack-base", BACKGROUND_STACK, background_stack_node_ids=("stack-overlay",)), None),
    "in-place-below-viewport": (task("far", IN_PLACE), None),
}


@pytest.mark.parametrize("case", sorted(CASES))
def test_document_is_restored_after_capture(chromium, settings, resolution, tmp_path, case):
    capture_task, node = CASES[case]
    result = capture(settings, resolution, tmp_path, capture_task, node)

    assert result["after"]["html"] == result["before"]["html"]
    assert result["after"]["scroll"] == result["before"]["scroll"] == [0, 150]
    assert result["after"]["values"] == ["hello", "25"]
    viewport_before, viewport_after = result["viewport"]
    assert viewport_after == viewport_before == resolution.viewport()

    seen = result["seen"]
    assert seen["scrollY"] == 0
    assert seen["sheets"] == 1
    assert os.path.exists(tmp_path / "images" / f"{capture_task.output_name}.png")
    assert result["meta"].image_width > 0 and result["meta"].image_height > 0


def test_clone_hides_the_page_around_the_copy(chromium, settings, resolution, tmp_path):
    capture_task, node = CASES["clone"]
    seen = capture(settings, resolution, tmp_path, capture_task, node)["seen"]
    assert seen["clones"] == 1
    assert seen["cardVisibility"] == "hidden"


def test_in_place_strips_ancestor_paint_and_rotation(chromium, settings, resolution, tmp_path):
    capture_task, node = CASES["in-place-clip"]
    seen = capture(settings, resolution, tmp_path, capture_task, node)["seen"]
    assert seen["clones"] == 0
    assert seen["cardVisibility"] == "visible"
    assert seen["cardBackground"] == "rgba(0, 0, 0, 0)"
    matrix = [float(v) for v in seen["chipTransform"][seen["chipTransform"].index("(") + 1:-1].split(",")]
    assert abs(matrix[1]) < 1e-3 and abs(matrix[2]) < 1e-3


def test_own_text_is_hidden_only_during_capture(chromium, settings, resolution, tmp_path):
    capture_task, node = CASES["in-place-button-text"]
    assert capture(settings, resolution, tmp_path, capture_task, node)["seen"]["buttonText"] == ""

    capture_task, node = CASES["in-place-field-text"]
    assert capture(settings, resolution, tmp_path, capture_task, node)["seen"]["fieldValue"] == ""


def test_oversized_clip_grows_viewport_only_for_the_screenshot(chromium, settings, resolution, tmp_path):
    capture_task, node = CASES["in-place-below-viewport"]
    result = capture(settings, resolution, tmp_path, capture_task, node)
    assert result["viewport"][1] == resolution.viewport()
    assert result["meta"].image_width == pytest.approx(100 * resolution.dpr)
    assert result["meta"].image_height == pytest.approx(60 * resolution.dpr)
