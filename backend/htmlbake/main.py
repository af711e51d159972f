import asyncio

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from htmlbake.config import get_settings
from htmlbake.errors import BakeConfigError


app = FastAPI(title="htmlbake API")

# Bakes run one at a time; they share the output folder.
_bake_lock = asyncio.Lock()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class BakeRequest(BaseModel):
    target: str
    width: int | None = None
    height: int | None = None
    dpr: float | None = None
    root_selector: str | None = None
    output_dir: str | None = None
    debug: bool | None = None


class FailedCapture(BaseModel):
    node_id: str
    output_name: str
    reason: str


class BakeResponse(BaseModel):
    status: str
    output_dir: str
    layout_path: str
    images: list[str]
    failed: list[FailedCapture]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/bake", response_model=BakeResponse)
async def bake_endpoint(request: BakeRequest):
    """Bake one document into layout.json + images under the output dir."""
    target = request.target.strip()
    if not target:
        raise HTTPException(status_code=400, detail="target is required")

    update = {
        "target_width": request.width,
        "target_height": request.height,
        "dpr": request.dpr,
        "root_selector": request.root_selector,
        "output_dir": request.output_dir,
        "debug": request.debug,
    }
    settings = get_settings().model_copy(update={k: v for k, v in update.items() if v is not None})

    try:
        from htmlbake.pipeline import bake
        async with _bake_lock:
            result = await bake(target, settings)
    except BakeConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"[bake] request failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return BakeResponse(
        status="partial" if result.failed else "completed",
        output_dir=result.output_dir,
        layout_path=result.layout_path,
        images=result.images,
        failed=[
            FailedCapture(node_id=f.node_id, output_name=f.output_name, reason=f.reason)
            for f in result.failed
        ],
    )
