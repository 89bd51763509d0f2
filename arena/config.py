"""Configuration loader — reads config.yaml, validates with Pydantic.

Agent personas and default models are hardcoded in agents/registry.py;
config.yaml only overrides model/temperature per agent and tunes the
gateway, workspace and editor. Secrets come from the environment
(``OPENROUTER_API_KEY``), optionally via ``.env`` / ``.env.local``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from arena.schemas import AGENT_IDS, AgentId

logger = logging.getLogger(__name__)


class GatewayConfig(BaseModel):
    """Upstream OpenAI-compatible chat-completions gateway."""

    url: str = "https://openrouter.ai/api/v1/chat/completions"
    api_key_env: str = "OPENROUTER_API_KEY"
    timeout_seconds: float = 120.0
    max_tokens: int = 400
    referer: str = "http://localhost:8000"
    title: str = "Multi-Agent Coding Interface"

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


class AgentOverride(BaseModel):
    """Per-agent overrides of the registry defaults."""

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)


class WorkspaceConfig(BaseModel):
    root: str = "workspace"
    backend: Literal["local", "memory"] = "local"
    max_file_size: int = 10 * 1024 * 1024


class ApiConfig(BaseModel):
    min_prompt_length: int = 1
    max_prompt_length: int = 100_000


class ExtractionConfig(BaseModel):
    strategy: str = "regex"


class EditorConfig(BaseModel):
    autosave_delay: float = 1.0    # seconds of quiet before a debounced save
    refresh_delay: float = 0.1     # pause after apply before viewers reload


class ArenaConfig(BaseModel):
    """Top-level configuration."""

    gateway: GatewayConfig = GatewayConfig()
    agents: dict[str, AgentOverride] = {}
    workspace: WorkspaceConfig = WorkspaceConfig()
    api: ApiConfig = ApiConfig()
    extraction: ExtractionConfig = ExtractionConfig()
    editor: EditorConfig = EditorConfig()

    environment: Literal["development", "production"] = "development"
    allowed_origins: list[str] = ["*"]

    @field_validator("agents")
    @classmethod
    def known_agents(cls, v: dict[str, AgentOverride]) -> dict[str, AgentOverride]:
        unknown = sorted(set(v) - set(AGENT_IDS))
        if unknown:
            raise ValueError(
                f"Unknown agent(s) {unknown}. Available: {list(AGENT_IDS)}"
            )
        return v

    @model_validator(mode="after")
    def validate_references(self) -> ArenaConfig:
        from arena.agents.registry import resolve_agent
        from arena.extractors import list_extractors

        if self.extraction.strategy not in list_extractors():
            raise ValueError(
                f"Unknown extraction strategy '{self.extraction.strategy}'. "
                f"Available: {list_extractors()}"
            )

        # Each agent must talk to a different model
        models = [resolve_agent(agent_id, self).model for agent_id in AGENT_IDS]
        if len(set(models)) != len(models):
            raise ValueError(f"Each agent must use a different model, got {models}")

        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_override(self, agent_id: AgentId) -> AgentOverride:
        return self.agents.get(agent_id) or AgentOverride()


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: ArenaConfig | None = None
_config_path: str = "config.yaml"


def load_config(path: str = "config.yaml") -> ArenaConfig:
    """Read config.yaml from disk, validate, and cache."""
    global _config, _config_path
    _config_path = path

    load_dotenv(".env.local")
    load_dotenv(".env")

    config_file = Path(path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file.resolve()}")

    raw = yaml.safe_load(config_file.read_text()) or {}
    _config = ArenaConfig(**raw)

    logger.info(
        f"Loaded config: environment={_config.environment}, "
        f"workspace={_config.workspace.root}, "
        f"extraction={_config.extraction.strategy}"
    )
    if not _config.gateway.api_key:
        logger.warning(f"{_config.gateway.api_key_env} is not set; agent streams will fail")
    return _config


def set_config(config: ArenaConfig) -> ArenaConfig:
    """Install an already-built config (tests, embedding)."""
    global _config
    _config = config
    return _config


def get_config() -> ArenaConfig:
    """Return cached config. Raises if not yet loaded."""
    if _config is None:
        raise RuntimeError("Config not loaded — call load_config() first")
    return _config


def reload_config() -> ArenaConfig:
    """Re-read config from disk. Called by /reload endpoint."""
    logger.info(f"Reloading config from {_config_path}")
    return load_config(_config_path)
