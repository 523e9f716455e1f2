"""Tests for configuration loading."""

import pytest

from phabdigest_core.config import DEFAULT_BASE_URL, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PHABRICATOR_BASE_URL", "PHABRICATOR_TOKEN", "PHABRICATOR_COOKIES"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["base_url"] == DEFAULT_BASE_URL
    assert config["include_done"] is False
    assert config["suggestions"] is True
    assert config["max_workers"] == 4
    assert config["api_token"] is None
    assert config["cookies"] is None


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".phabdigest.yml"
    cfg.write_text("base_url: https://phab.example/\ninclude_done: true\nmax_workers: 8\n")
    config = load_config(config_path=str(cfg))
    assert config["base_url"] == "https://phab.example"
    assert config["include_done"] is True
    assert config["max_workers"] == 8


def test_non_mapping_config_raises(tmp_path):
    cfg = tmp_path / ".phabdigest.yml"
    cfg.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config(config_path=str(cfg))


def test_env_base_url_below_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("PHABRICATOR_BASE_URL", "https://env.example")
    assert load_config(config_path=str(tmp_path / "none.yml"))["base_url"] == "https://env.example"

    cfg = tmp_path / ".phabdigest.yml"
    cfg.write_text("base_url: https://file.example\n")
    assert load_config(config_path=str(cfg))["base_url"] == "https://file.example"


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".phabdigest.yml"
    cfg.write_text("max_workers: 8\n")
    config = load_config(config_path=str(cfg), cli_overrides={"max_workers": 2})
    assert config["max_workers"] == 2


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".phabdigest.yml"
    cfg.write_text("include_done: true\n")
    config = load_config(config_path=str(cfg), cli_overrides={"include_done": None})
    assert config["include_done"] is True


def test_env_credentials_loaded(monkeypatch):
    monkeypatch.setenv("PHABRICATOR_TOKEN", "api-env")
    monkeypatch.setenv("PHABRICATOR_COOKIES", "phsid=abc")
    config = load_config(config_path="nonexistent.yml")
    assert config["api_token"] == "api-env"
    assert config["cookies"] == "phsid=abc"


def test_cli_token_wins_over_env(monkeypatch):
    monkeypatch.setenv("PHABRICATOR_TOKEN", "api-env")
    config = load_config(config_path="nonexistent.yml", cli_overrides={"api_token": "api-cli"})
    assert config["api_token"] == "api-cli"


def test_credentials_in_file_are_ignored(tmp_path):
    cfg = tmp_path / ".phabdigest.yml"
    cfg.write_text("api_token: api-from-file\n")
    config = load_config(config_path=str(cfg))
    assert config["api_token"] is None
