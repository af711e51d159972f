"""
Rendering session: one Chromium page sized to the bake resolution.

Thin wrapper over the Playwright async API. Everything else in the
pipeline only needs `page.evaluate`, `page.screenshot` and the viewport.
"""

from pathlib import Path
from urllib.parse import urlparse

from playwright.async_api import async_playwright

from htmlbake.config import Resolution, Settings
from htmlbake.errors import BakeConfigError


def resolve_target(target: str) -> str:
    """Turn a file path, directory or URL into something page.goto() accepts."""
    if not target or not str(target).strip():
        raise BakeConfigError("No input document given")

    target = str(target).strip()
    scheme = urlparse(target).scheme.lower()
    if scheme in ("http", "https", "file", "data", "about"):
        return target

    path = Path(target).expanduser()
    if path.is_dir():
        path = path / "index.html"
    if not path.exists():
        raise BakeConfigError(f"Input not found: {path}")
    return path.resolve().as_uri()


class RenderingSession:
    """
    async with RenderingSession(settings, resolution) as session:
        await session.open("page.html")
        ...
    """

    def __init__(self, settings: Settings, resolution: Resolution):
        self.settings = settings
        self.resolution = resolution
        self._playwright = None
        self._browser = None
        self._context = None
        self.page = None

    async def __aenter__(self):
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=self.settings.headless)
            self._context = await self._browser.new_context(
                viewport=self.resolution.viewport(),
                device_scale_factor=self.resolution.dpr,
            )
            self.page = await self._context.new_page()
            self.page.set_default_timeout(self.settings.navigation_timeout_ms)
        except Exception:
            await self.close()
            raise
        print(
            f"[session] Chromium ready: viewport {self.resolution.logical_width}x"
            f"{self.resolution.logical_height} @ dpr {self.resolution.dpr}"
        )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                await closer.close()
            except Exception as e:
                print(f"[session] close failed: {e}")
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = self._browser = self._playwright = self.page = None

    async def open(self, target: str) -> str:
        """Navigate and wait for the document to settle. Returns the resolved URL."""
        url = resolve_target(target)
        timeout = self.settings.navigation_timeout_ms

        if self.settings.disable_load_fallback:
            await self.page.goto(url, wait_until="load", timeout=timeout)
            return url

        await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        try:
            await self.page.wait_for_function(
                "document.readyState === 'complete'",
                timeout=self.settings.load_settle_timeout_ms,
            )
        except Exception as e:
            # Slow subresources; continue with whatever has loaded.
            print(f"  [session] load event not reached, continuing after domcontentloaded: {e}")
        return url

    async def measure_content_size(self) -> dict:
        return await self.page.evaluate("""() => {
            const body = document.body;
            const html = document.documentElement;
            return {
                width: Math.max(
                    body ? body.scrollWidth : 0, body ? body.offsetWidth : 0,
                    html ? html.clientWidth : 0, html ? html.scrollWidth : 0,
                    html ? html.offsetWidth : 0, window.innerWidth || 0,
                ),
                height: Math.max(
                    body ? body.scrollHeight : 0, body ? body.offsetHeight : 0,
                    html ? html.clientHeight : 0, html ? html.scrollHeight : 0,
                    html ? html.offsetHeight : 0, window.innerHeight || 0,
                ),
            };
        }""")
