from htmlbake import cli, pipeline
from htmlbake.config import Settings
from htmlbake.errors import RootNotFoundError


def parse(*argv):
    return cli.build_parser().parse_args(list(argv))


def test_only_passed_flags_override():
    args = parse("bake", "page.html", "--width", "390", "--debug", "--no-bake-rotation")
    assert cli.settings_overrides(args) == {"target_width": 390, "debug": True, "bake_rotation": False}


def test_bake_success_exit_code(monkeypatch, tmp_path):
    seen = {}

    def fake_run_bake(target, settings):
        seen["settings"] = settings
        return pipeline.BakeResult(output_dir=str(tmp_path), layout_path=str(tmp_path / "layout.json"))

    monkeypatch.setattr(pipeline, "run_bake", fake_run_bake)
    code = cli.cmd_bake(parse("bake", "page.html", "--root", "#app", "--id-mode", "stable"), Settings(_env_file=None))
    assert code == 0
    assert seen["settings"].root_selector == "#app"
    assert seen["settings"].id_mode == "stable"


def test_bake_failure_exit_code(monkeypatch, capsys):
    def fake_run_bake(target, settings):
        raise RootNotFoundError("no visible content")

    monkeypatch.setattr(pipeline, "run_bake", fake_run_bake)
    assert cli.cmd_bake(parse("bake", "page.html"), Settings(_env_file=None)) == 1
    assert "no visible content" in capsys.readouterr().out


def test_unexpected_error_exit_code(monkeypatch):
    def fake_run_bake(target, settings):
        raise OSError("disk full")

    monkeypatch.setattr(pipeline, "run_bake", fake_run_bake)
    assert cli.cmd_bake(parse("bake", "page.html"), Settings(_env_file=None)) == 1
