from htmlbake.config import Settings, build_resolution


def test_physical_target_derives_dpr_from_base_width():
    res = build_resolution(Settings(_env_file=None))
    assert res.mode == "physical"
    assert res.dpr == 2.0
    assert (res.logical_width, res.logical_height) == (375, 812)
    assert (res.canvas_width, res.canvas_height) == (750, 1624)
    assert res.viewport() == {"width": 375, "height": 812}


def test_logical_target_uses_explicit_dpr():
    res = build_resolution(Settings(_env_file=None, target_width=390, target_height=844, dpr=3))
    assert res.mode == "logical"
    assert res.dpr == 3.0
    assert (res.canvas_width, res.canvas_height) == (1170, 2532)


def test_logical_target_defaults_to_dpr_two():
    res = build_resolution(Settings(_env_file=None, target_width=320, target_height=568))
    assert res.dpr == 2.0
    assert res.logical_width == 320


def test_invalid_values_fall_back():
    res = build_resolution(Settings(_env_file=None, target_width=0, target_height=-5, base_width=0))
    assert res.target_width == 750
    assert res.target_height == 1624
    assert res.dpr == 2.0


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("BAKE_ROOT_SELECTOR", "#app")
    monkeypatch.setenv("BAKE_DEBUG", "true")
    settings = Settings(_env_file=None)
    assert settings.root_selector == "#app"
    assert settings.debug is True
