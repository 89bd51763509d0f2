"""Agent registry — hardcoded agent definitions.

The only place where personas, default models and sampling temperatures
are defined. config.yaml may override model and temperature per agent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from arena.schemas import AGENT_IDS, AgentId

if TYPE_CHECKING:
    from arena.config import ArenaConfig


@dataclass
class AgentDefinition:
    name: str
    description: str
    model: str
    temperature: float
    persona: str


AGENT_REGISTRY: dict[AgentId, AgentDefinition] = {
    "claude": AgentDefinition(
        name="Claude",
        description="Anthropic's Claude",
        model="mistralai/devstral-2512:free",
        temperature=0.3,
        persona=(
            "You are Claude, a coding assistant. You take a direct, technical, "
            "no-nonsense approach. Start with a brief, direct answer, no generic "
            "greetings. Focus on practical, efficient solutions with minimal fluff."
        ),
    ),
    "gemini": AgentDefinition(
        name="Gemini",
        description="Google's Gemini",
        model="google/gemma-3-27b-it:free",
        temperature=0.9,
        persona=(
            "You are Gemini, a coding assistant. You take an enthusiastic, "
            "creative approach. Suggest multiple approaches and innovative "
            "alternatives where they help."
        ),
    ),
    "chatgpt": AgentDefinition(
        name="ChatGPT",
        description="OpenAI's ChatGPT",
        model="openai/gpt-oss-20b:free",
        temperature=0.6,
        persona=(
            "You are ChatGPT, a coding assistant. You take a clear, structured, "
            "step-by-step approach and explain each step you implement."
        ),
    ),
}


@dataclass
class ResolvedAgent:
    id: AgentId
    name: str
    model: str
    temperature: float
    system_prompt: str  # persona + file-edit directive instructions


def get_definition(agent_id: str) -> AgentDefinition:
    """Look up an agent by id. Raises ValueError if not found."""
    if agent_id not in AGENT_REGISTRY:
        raise ValueError(
            f"Unknown agent '{agent_id}'. Available agents: {list(AGENT_IDS)}"
        )
    return AGENT_REGISTRY[agent_id]  # type: ignore[index]


def resolve_agent(agent_id: AgentId, config: ArenaConfig) -> ResolvedAgent:
    """Merge an agent definition with its config overrides.

    The system prompt always ends with the active extractor's instructions,
    so agents phrase edits in a form the extractor recognises.
    """
    from arena.extractors import resolve_extractor

    definition = get_definition(agent_id)
    override = config.get_override(agent_id)
    extractor = resolve_extractor(config.extraction.strategy)

    return ResolvedAgent(
        id=agent_id,
        name=definition.name,
        model=override.model or definition.model,
        temperature=(
            override.temperature
            if override.temperature is not None
            else definition.temperature
        ),
        system_prompt=f"{definition.persona}\n\n{extractor.instructions}",
    )
