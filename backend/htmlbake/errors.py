"""Error taxonomy. Config and analysis errors abort a run; capture errors do not."""


class BakeConfigError(RuntimeError):
    """Bad input location, missing file or invalid settings."""


class RootNotFoundError(BakeConfigError):
    """The root selector matched nothing, or the page has no visible content."""


class AnalysisError(RuntimeError):
    """Extraction failed for one element; the whole tree is discarded."""

    def __init__(self, dom_path: str, message: str):
        self.dom_path = dom_path
        super().__init__(f"{dom_path or '<unknown>'}: {message}")


class CaptureError(RuntimeError):
    """Setup or screenshot failed for a single task."""
