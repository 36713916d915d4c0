from __future__ import annotations

from viewlink.config import ViewlinkCfg, load_config


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg == ViewlinkCfg()


def test_partial_file_overrides(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "engine:\n"
        "  retry_budget: 5\n"
        "ar:\n"
        "  background_color: [10, 20, 30, 255]\n"
        "loopback:\n"
        "  unavailable_modes: [augmented-reality]\n"
        "bogus_section:\n"
        "  nothing: 1\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.engine.retry_budget == 5
    assert cfg.engine.setup_timeout_ticks == 0
    assert cfg.ar.background_color == (10, 20, 30, 255)
    assert cfg.loopback.unavailable_modes == ["augmented-reality"]
    assert not hasattr(cfg, "bogus_section")


def test_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(str(path)) == ViewlinkCfg()


def test_shipped_config_loads():
    cfg = load_config()
    assert cfg.node.name == "Viewlink Presenter"
    assert cfg.controls.connect == "c"
