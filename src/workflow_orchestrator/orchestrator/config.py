"""Process configuration.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The engine binding mode keeps its historical variable name,
`CONFIG_WORKFLOW_ENGINE_MODE`, and is read once at startup.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from workflow_orchestrator.binding.manager import BindingMode
from workflow_orchestrator.workflow.policy import GatingErrorPolicy


class OrchestratorSettings(BaseSettings):
    """Settings for the workflow orchestrator.

    Environment variables:
    - LOG_LEVEL                               (optional)
    - CONFIG_WORKFLOW_ENGINE_MODE             (optional; late | eager | lazy)
    - BUSINESS_TYPE                           (optional)
    - ORCHESTRATOR_GATING_ERROR_POLICY        (optional; fail_closed | fail_open)
    - ORCHESTRATOR_TOLERATE_HANDLER_FAILURES  (optional)
    - ORCHESTRATOR_RUN_TIMEOUT_SECONDS        (optional; 0 disables the deadline)
    - ORCHESTRATOR_TEMPLATES_PATH             (optional)
    - ORCHESTRATOR_TEMPLATE_STORE_PATH        (optional)
    - ORCHESTRATOR_TEMPLATE_CACHE_TTL_SECONDS (optional; 0 disables the cache)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    workflow_engine_mode: BindingMode = Field(
        default=BindingMode.LATE,
        validation_alias="CONFIG_WORKFLOW_ENGINE_MODE",
        description="How the workflow engine is bound: late, eager or lazy",
    )

    business_type: str = Field(
        default="education",
        validation_alias="BUSINESS_TYPE",
        description="Business type whose templates are seeded by default",
    )

    gating_error_policy: GatingErrorPolicy = Field(
        default=GatingErrorPolicy.FAIL_CLOSED,
        validation_alias="ORCHESTRATOR_GATING_ERROR_POLICY",
        description="What a failing condition does to a run",
    )

    tolerate_handler_failures: bool = Field(
        default=False,
        validation_alias="ORCHESTRATOR_TOLERATE_HANDLER_FAILURES",
        description="Keep running after an activity handler fails",
    )

    run_timeout_seconds: float = Field(
        default=0,
        ge=0,
        validation_alias="ORCHESTRATOR_RUN_TIMEOUT_SECONDS",
        description="Per-run deadline in seconds; 0 means no deadline",
    )

    templates_path: Path = Field(
        default=Path("templates"),
        validation_alias="ORCHESTRATOR_TEMPLATES_PATH",
        description="Directory of authored workflow template JSON files",
    )

    template_store_path: Path = Field(
        default=Path("state/templates.json"),
        validation_alias="ORCHESTRATOR_TEMPLATE_STORE_PATH",
        description="JSON file holding materialized templates",
    )

    template_cache_ttl_seconds: float = Field(
        default=300,
        ge=0,
        validation_alias="ORCHESTRATOR_TEMPLATE_CACHE_TTL_SECONDS",
        description="How long template lookups are cached; 0 disables the cache",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("workflow_engine_mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: object) -> BindingMode:
        if value is None or isinstance(value, str | BindingMode):
            return BindingMode.parse(value)
        raise ValueError(f"Unknown workflow engine mode: {value}")

    @field_validator("gating_error_policy", mode="before")
    @classmethod
    def _parse_policy(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value
