from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "railfleet"
    log_level: str = "INFO"

    # Full SQLAlchemy URL wins over the discrete DB_* fields when set.
    database_url: str | None = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "railfleet"
    db_user: str = "railfleet"
    db_password: str = ""
    # Managed Postgres requires TLS; local containers usually do not.
    db_ssl: bool = False
    # Bound the pool so a burst of slow queries cannot exhaust the server.
    db_pool_size: int = 20
    db_max_overflow: int = 0
    # Fail fast when no pooled connection frees up in time.
    db_pool_timeout_s: float = 2.0
    # Recycle idle connections before managed Postgres drops them.
    db_pool_recycle_s: int = 1800
    db_statement_timeout_ms: int = 0

    # Require verified bearer tokens for every protected endpoint.
    auth_enabled: bool = True
    # Allow X-Dev-* identity headers only when explicitly enabled for local dev.
    auth_dev_bypass: bool = False
    auth_jwks_url: str | None = None
    auth_issuer: str | None = None
    auth_audience: str | None = None
    # Allow bounded clock skew for token expiry checks.
    auth_clock_skew_seconds: int = 120
    # Cache the provider key set briefly to avoid a JWKS fetch per request.
    auth_jwks_cache_ttl_s: int = 300

    # Internal tenant key used when no mapping matches.
    default_tenant_id: str = "default"
    # JSON list of {"external_id", "internal_id", "name"} replacing the built-in mapping.
    tenant_mapping_json: str | None = None
    # Comma-delimited emails allowed to act on behalf of any tenant.
    super_admin_emails: str = "fleet-admin@railfleet.app"
    # Identity-provider group ids used to label the caller's role in chat prompts.
    supervisor_group_id: str = "d5f7f6e7-380f-468d-9d0e-6a7c30fd3ef9"
    technician_group_id: str = "5dc860e3-600d-4332-9200-5cdc53e7242b"

    # "azure" calls the configured service; "fake" returns canned data for local runs; "none" disables.
    search_provider: str = "azure"
    completion_provider: str = "azure"

    azure_search_endpoint: str | None = None
    azure_search_key: str | None = None
    azure_search_index: str = "fleet-docs-index"
    azure_search_api_version: str = "2023-11-01"

    azure_openai_endpoint: str | None = None
    azure_openai_key: str | None = None
    azure_openai_deployment: str = "gpt-4o-mini"
    azure_openai_api_version: str = "2024-02-01"

    # Keep the retrieved context small so prompts stay within the model budget.
    chat_top_k: int = 3
    chat_temperature: float = 0.7
    chat_max_tokens: int = 800
    chat_top_p: float = 0.95

    # Centralize external call timeouts for integrations (ms).
    ext_call_timeout_ms: int = 8000
    # Retry transient integration failures for a bounded number of attempts.
    ext_retry_max_attempts: int = 2
    # Base backoff between retry attempts (ms), jittered per call.
    ext_retry_backoff_ms: int = 200

    # Comma-delimited browser origins allowed to call the API.
    cors_allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{quote_plus(self.db_user)}:{quote_plus(self.db_password)}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def super_admin_email_set(self) -> frozenset[str]:
        return frozenset(
            email.strip().lower() for email in self.super_admin_emails.split(",") if email.strip()
        )

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @property
    def search_configured(self) -> bool:
        return bool(self.azure_search_endpoint and self.azure_search_key)

    @property
    def completion_configured(self) -> bool:
        return bool(self.azure_openai_endpoint and self.azure_openai_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
