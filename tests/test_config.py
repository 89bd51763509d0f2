import pydantic
import pytest

from arena.agents.registry import AGENT_REGISTRY, resolve_agent
from arena.config import ArenaConfig, get_config, load_config, reload_config


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


def test_defaults_are_valid():
    config = ArenaConfig()
    assert config.extraction.strategy == "regex"
    assert config.workspace.root == "workspace"
    assert config.is_production is False
    assert config.get_override("claude").model is None


def test_load_and_reload(tmp_path):
    path = write_config(
        tmp_path,
        "environment: production\n"
        "agents:\n"
        "  gemini:\n"
        "    temperature: 0.5\n"
        "workspace:\n"
        "  backend: memory\n",
    )

    config = load_config(path)
    assert get_config() is config
    assert config.is_production
    assert config.workspace.backend == "memory"
    assert resolve_agent("gemini", config).temperature == 0.5

    (tmp_path / "config.yaml").write_text("environment: development\n")
    reloaded = reload_config()
    assert get_config() is reloaded
    assert reloaded.environment == "development"


def test_empty_file_uses_defaults(tmp_path):
    config = load_config(write_config(tmp_path, ""))
    assert config == ArenaConfig()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "absent.yaml"))


def test_unknown_agent_rejected():
    with pytest.raises(pydantic.ValidationError, match="Unknown agent"):
        ArenaConfig(agents={"llama": {"model": "x"}})


def test_agents_must_use_distinct_models():
    shared = AGENT_REGISTRY["claude"].model
    with pytest.raises(pydantic.ValidationError, match="different model"):
        ArenaConfig(agents={"gemini": {"model": shared}})


def test_unknown_extraction_strategy_rejected():
    with pytest.raises(pydantic.ValidationError, match="extraction strategy"):
        ArenaConfig(extraction={"strategy": "telepathy"})


def test_temperature_bounds():
    with pytest.raises(pydantic.ValidationError):
        ArenaConfig(agents={"claude": {"temperature": 3.0}})


def test_model_override_and_system_prompt():
    config = ArenaConfig(agents={"chatgpt": {"model": "openai/other"}})
    agent = resolve_agent("chatgpt", config)
    assert agent.model == "openai/other"
    assert agent.temperature == AGENT_REGISTRY["chatgpt"].temperature
    assert agent.system_prompt.startswith(AGENT_REGISTRY["chatgpt"].persona)
    assert "Edit file:" in agent.system_prompt


def test_api_key_read_from_environment(monkeypatch):
    config = ArenaConfig(gateway={"api_key_env": "ARENA_TEST_KEY"})
    monkeypatch.delenv("ARENA_TEST_KEY", raising=False)
    assert config.gateway.api_key is None
    monkeypatch.setenv("ARENA_TEST_KEY", "secret")
    assert config.gateway.api_key == "secret"
