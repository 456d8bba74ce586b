from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="NODE_ENV")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    ddb_endpoint_url: str | None = Field(default=None, validation_alias="DDB_ENDPOINT_URL")

    # OpenAI
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_project_id: str | None = Field(default=None, validation_alias="OPENAI_PROJECT_ID")
    openai_organization_id: str | None = Field(default=None, validation_alias="OPENAI_ORG_ID")
    openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
    openai_model_insight_enrichment: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_INSIGHT_ENRICHMENT"
    )
    openai_model_campaign_enrichment: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_CAMPAIGN_ENRICHMENT"
    )
    openai_model_insight_synthesis: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_INSIGHT_SYNTHESIS"
    )
    openai_model_campaign_synthesis: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_CAMPAIGN_SYNTHESIS"
    )
    # A hung model call would stall the request that crossed the batch boundary.
    openai_timeout_s: float = Field(default=8.0, validation_alias="OPENAI_TIMEOUT_S")
    # Guardrail: clamp max output tokens (prevents accidental cost explosions).
    openai_max_output_tokens_cap: int = Field(
        default=4000, validation_alias="OPENAI_MAX_OUTPUT_TOKENS_CAP"
    )

    # Pipeline
    batch_size: int = Field(default=5, validation_alias="BATCH_SIZE")
    insight_auto_approve: bool = Field(default=True, validation_alias="INSIGHT_AUTO_APPROVE")
    elevated_roles: str = Field(default="leader,admin", validation_alias="ELEVATED_ROLES")
    fuzzy_prefix_chars: int = Field(default=20, validation_alias="FUZZY_PREFIX_CHARS")
    client_guess_prefix_chars: int = Field(default=30, validation_alias="CLIENT_GUESS_PREFIX_CHARS")
    urgent_due_days_max: int = Field(default=14, validation_alias="URGENT_DUE_DAYS_MAX")
    counter_cas_max_attempts: int = Field(default=25, validation_alias="COUNTER_CAS_MAX_ATTEMPTS")
    batch_window_read_attempts: int = Field(default=3, validation_alias="BATCH_WINDOW_READ_ATTEMPTS")
    batch_window_read_delay_s: float = Field(default=0.2, validation_alias="BATCH_WINDOW_READ_DELAY_S")

    @property
    def is_production(self) -> bool:
        return str(self.environment or "").strip().lower() == "production"

    @property
    def elevated_role_set(self) -> set[str]:
        return {r.strip().lower() for r in str(self.elevated_roles or "").split(",") if r.strip()}

    def require_in_production(self) -> None:
        if not self.is_production:
            return
        missing: list[str] = []
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if missing:
            raise RuntimeError(f"Missing required production config: {', '.join(missing)}")

    def to_log_safe_dict(self) -> dict[str, object]:
        def _has(v: str | None) -> bool:
            return bool(v and str(v).strip())

        return {
            "environment": self.environment,
            "port": self.port,
            "aws_region": self.aws_region,
            "ddb_table_name": self.ddb_table_name,
            "integrations": {
                "openai_api_key_configured": _has(self.openai_api_key),
                "openai_project_id_configured": _has(self.openai_project_id),
                "openai_organization_id_configured": _has(self.openai_organization_id),
                "openai_model": self.openai_model,
                "openai_timeout_s": self.openai_timeout_s,
            },
            "pipeline": {
                "batch_size": self.batch_size,
                "insight_auto_approve": self.insight_auto_approve,
                "elevated_roles": sorted(self.elevated_role_set),
                "fuzzy_prefix_chars": self.fuzzy_prefix_chars,
                "client_guess_prefix_chars": self.client_guess_prefix_chars,
                "urgent_due_days_max": self.urgent_due_days_max,
                "batch_window_read_attempts": self.batch_window_read_attempts,
            },
        }

    def openai_model_for(self, purpose: str) -> str:
        # Allow per-purpose override, else fall back to OPENAI_MODEL.
        purpose = (purpose or "").strip().lower()
        override_map = {
            "insight_enrichment": self.openai_model_insight_enrichment,
            "campaign_enrichment": self.openai_model_campaign_enrichment,
            "insight_synthesis": self.openai_model_insight_synthesis,
            "campaign_synthesis": self.openai_model_campaign_synthesis,
        }
        ov = override_map.get(purpose)
        if ov and str(ov).strip():
            return str(ov).strip()
        return str(self.openai_model or "gpt-4o-mini").strip() or "gpt-4o-mini"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s


# Backwards-compatible module-level singleton.
settings = get_settings()
