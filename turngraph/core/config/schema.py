"""turngraph configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """Single LLM provider."""

    api_key: str = ""
    api_base: str | None = None


class ProvidersConfig(BaseModel):
    """LLM providers (LiteLLM multi-provider)."""

    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    deepseek: ProviderConfig = Field(default_factory=ProviderConfig)
    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)


class LLMConfig(BaseModel):
    """Default model used by specialist nodes (tenant ai_config may override)."""

    model: str = "openai/gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 600


class OrchestratorConfig(BaseModel):
    """Graph execution limits and canned responses."""

    default_max_iterations: int = 5
    step_ceiling_factor: int = 2
    serialize_turns: bool = True
    default_vertical: str = "dental"
    fallback_response: str = (
        "Disculpa, estoy experimentando dificultades técnicas. "
        "Un asesor te atenderá pronto."
    )
    escalation_response: str = (
        "Gracias por tu mensaje. Te comunico con un asesor de nuestro equipo "
        "que te atenderá en breve."
    )
    rate_limited_response: str = (
        "Estamos recibiendo muchas solicitudes. Por favor, espera un momento "
        "antes de enviar otro mensaje."
    )


class CheckpointConfig(BaseModel):
    """Checkpoint persistence (SQLite)."""

    enabled: bool = True
    path: str = "data/checkpoints.db"
    namespace: str = ""
    checkpoint_every_step: bool = True
    connect_timeout_s: float = 10.0
    cleanup_interval_s: int = 6 * 60 * 60
    max_age_s: int = 7 * 24 * 60 * 60


class ApiConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings, env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        TURNGRAPH_LLM__MODEL=anthropic/claude-sonnet-4-5-20250929
        TURNGRAPH_CHECKPOINTS__PATH=data/prod-checkpoints.db
        TURNGRAPH_ORCHESTRATOR__DEFAULT_MAX_ITERATIONS=3
    """

    model_config = SettingsConfigDict(
        env_prefix="TURNGRAPH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    checkpoints: CheckpointConfig = Field(default_factory=CheckpointConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs and ranks below the environment
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ── Computed properties ─────────────────────────────────

    @property
    def checkpoint_path(self) -> Path:
        return Path(self.checkpoints.path)

    def step_ceiling(self, max_iterations: int) -> int:
        """Hard cap on graph steps for one turn.

        Independent of the business limit: specialist visits are bounded by
        ``max_iterations`` and the five control nodes run at most once each.
        """
        return self.orchestrator.step_ceiling_factor * max_iterations + 5

    def get_api_base(self, model: str | None = None) -> str | None:
        """Get API base URL for model name."""
        model_name = (model or self.llm.model).lower()
        if "openrouter" in model_name:
            return self.providers.openrouter.api_base or "https://openrouter.ai/api/v1"
        for name in ProvidersConfig.model_fields:
            p = getattr(self.providers, name)
            if isinstance(p, ProviderConfig) and name in model_name and p.api_base:
                return p.api_base
        return None
