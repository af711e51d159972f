"""htmlbake command line."""

import argparse
import sys

from htmlbake.config import Settings, get_settings
from htmlbake.errors import BakeConfigError


def settings_overrides(args: argparse.Namespace) -> dict:
    """Only flags the user actually passed override Settings."""
    mapping = {
        "width": "target_width",
        "height": "target_height",
        "dpr": "dpr",
        "root": "root_selector",
        "out": "output_dir",
        "id_mode": "id_mode",
    }
    update = {}
    for arg_name, field_name in mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            update[field_name] = value
    if getattr(args, "debug", False):
        update["debug"] = True
    if getattr(args, "headed", False):
        update["headless"] = False
    if getattr(args, "no_bake_rotation", False):
        update["bake_rotation"] = False
    if getattr(args, "disable_load_fallback", False):
        update["disable_load_fallback"] = True
    return update


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="htmlbake", description="Bake an HTML page into a layout tree and images.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    bake = sub.add_parser("bake", help="bake one document")
    bake.add_argument("target", help="HTML file, directory with index.html, or URL")
    bake.add_argument("--width", type=int, help="target width (physical when > 500)")
    bake.add_argument("--height", type=int, help="target height")
    bake.add_argument("--dpr", type=float, help="pixel ratio in logical mode")
    bake.add_argument("--root", help="root selector, or 'auto'")
    bake.add_argument("--out", help="output directory")
    bake.add_argument("--id-mode", choices=("uuid", "stable"))
    bake.add_argument("--debug", action="store_true", help="write debug dump and run rules check")
    bake.add_argument("--headed", action="store_true")
    bake.add_argument("--no-bake-rotation", action="store_true", help="neutralize rotations instead of baking them")
    bake.add_argument("--disable-load-fallback", action="store_true")

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def cmd_bake(args: argparse.Namespace, base: Settings = None) -> int:
    from htmlbake.pipeline import run_bake

    base = base or get_settings()
    settings = base.model_copy(update=settings_overrides(args))
    try:
        result = run_bake(args.target, settings)
    except BakeConfigError as e:
        print(f"[bake] configuration error: {e}")
        return 1
    except Exception as e:
        print(f"[bake] failed: {type(e).__name__}: {e}")
        return 1
    print(f"[bake] layout: {result.layout_path}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("htmlbake.main:app", host=args.host, port=args.port)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.cmd == "bake":
        return cmd_bake(args)
    if args.cmd == "serve":
        return cmd_serve(args)
    return 1


if __name__ == "__main__":
    sys.exit(main())
