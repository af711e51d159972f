import asyncio

import httpx
from fastapi.testclient import TestClient

from htmlbake import main, pipeline
from htmlbake.errors import RootNotFoundError
from htmlbake.models import CaptureFailure

client = TestClient(main.app)


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_bake_passes_overrides_and_reports_failures(monkeypatch, tmp_path):
    seen = {}

    async def fake_bake(target, settings):
        seen["target"] = target
        seen["settings"] = settings
        return pipeline.BakeResult(
            output_dir=str(tmp_path),
            layout_path=str(tmp_path / "layout.json"),
            images=["images/bg.png", "images/0001_img.png"],
            failed=[CaptureFailure("n2", "0002_div", "vanished: missing")],
        )

    monkeypatch.setattr(pipeline, "bake", fake_bake)
    response = client.post("/bake", json={"target": " page.html ", "width": 390, "dpr": 3, "output_dir": str(tmp_path)})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "partial"
    assert body["images"] == ["images/bg.png", "images/0001_img.png"]
    assert body["failed"] == [{"node_id": "n2", "output_name": "0002_div", "reason": "vanished: missing"}]
    assert seen["target"] == "page.html"
    assert seen["settings"].target_width == 390
    assert seen["settings"].dpr == 3
    assert seen["settings"].output_dir == str(tmp_path)


def test_config_errors_are_400(monkeypatch):
    async def fake_bake(target, settings):
        raise RootNotFoundError("selector #app matched nothing")

    monkeypatch.setattr(pipeline, "bake", fake_bake)
    response = client.post("/bake", json={"target": "page.html", "root_selector": "#app"})
    assert response.status_code == 400
    assert "#app" in response.json()["detail"]


def test_other_errors_are_500(monkeypatch):
    async def fake_bake(target, settings):
        raise RuntimeError("browser died")

    monkeypatch.setattr(pipeline, "bake", fake_bake)
    response = client.post("/bake", json={"target": "page.html"})
    assert response.status_code == 500


def test_blank_target_is_rejected():
    response = client.post("/bake", json={"target": "   "})
    assert response.status_code == 400


def test_concurrent_bakes_run_one_at_a_time(monkeypatch, tmp_path):
    active = {"now": 0, "peak": 0}

    async def slow_bake(target, settings):
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0.02)
        active["now"] -= 1
        return pipeline.BakeResult(output_dir=str(tmp_path), layout_path=str(tmp_path / "layout.json"))

    monkeypatch.setattr(pipeline, "bake", slow_bake)

    async def post_twice():
        transport = httpx.ASGITransport(app=main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            return await asyncio.gather(
                ac.post("/bake", json={"target": "a.html"}),
                ac.post("/bake", json={"target": "b.html"}),
            )

    responses = asyncio.run(post_twice())
    assert [r.status_code for r in responses] == [200, 200]
    assert active["peak"] == 1
