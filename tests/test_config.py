"""Tests for turngraph.core.config."""

import pytest
import yaml

from turngraph.core.config import Config, load_config


def test_defaults():
    cfg = Config()
    assert cfg.orchestrator.default_max_iterations == 5
    assert cfg.orchestrator.serialize_turns is True
    assert cfg.checkpoints.path == "data/checkpoints.db"
    assert cfg.checkpoints.cleanup_interval_s == 21600
    assert cfg.checkpoints.max_age_s == 7 * 24 * 3600
    assert "asesor" in cfg.orchestrator.fallback_response


def test_step_ceiling():
    cfg = Config(orchestrator={"step_ceiling_factor": 3})
    assert cfg.step_ceiling(5) == 20
    assert Config().step_ceiling(5) == 15


def test_env_override(monkeypatch):
    monkeypatch.setenv("TURNGRAPH_ORCHESTRATOR__DEFAULT_MAX_ITERATIONS", "3")
    monkeypatch.setenv("TURNGRAPH_LLM__MODEL", "groq/llama-3.1-8b")
    cfg = Config()
    assert cfg.orchestrator.default_max_iterations == 3
    assert cfg.llm.model == "groq/llama-3.1-8b"


def test_get_api_base():
    cfg = Config(providers={"groq": {"api_base": "https://groq.local"}})
    assert cfg.get_api_base("groq/llama") == "https://groq.local"
    assert cfg.get_api_base("openrouter/x") == "https://openrouter.ai/api/v1"
    assert cfg.get_api_base("openai/gpt-4o") is None


def test_load_yaml(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"checkpoints": {"path": "x.db", "namespace": "prod"}}))
    cfg = load_config(f)
    assert cfg.checkpoints.path == "x.db"
    assert cfg.checkpoints.namespace == "prod"


def test_load_from_env_path(tmp_path, monkeypatch):
    f = tmp_path / "custom.yaml"
    f.write_text(yaml.dump({"orchestrator": {"default_vertical": "restaurant"}}))
    monkeypatch.setenv("TURNGRAPH_CONFIG", str(f))
    assert load_config().orchestrator.default_vertical == "restaurant"


def test_load_missing(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg.orchestrator.default_max_iterations == 5


def test_env_overrides_yaml(tmp_path, monkeypatch):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"checkpoints": {"path": "yaml.db", "namespace": "yaml"}}))
    monkeypatch.setenv("TURNGRAPH_CHECKPOINTS__NAMESPACE", "env")
    cfg = load_config(f)
    assert cfg.checkpoints.namespace == "env"
    assert cfg.checkpoints.path == "yaml.db"


def test_load_yml_from_cwd(tmp_path, monkeypatch):
    (tmp_path / "config.yml").write_text(yaml.dump({"api": {"port": 9000}}))
    monkeypatch.delenv("TURNGRAPH_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    assert load_config().api.port == 9000


def test_load_empty_file(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text("")
    assert load_config(f).api.port == 8000


def test_load_rejects_non_mapping(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump(["not", "a", "mapping"]))
    with pytest.raises(ValueError, match="mapping"):
        load_config(f)
