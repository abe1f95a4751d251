"""
Shared configuration management for the Request Pipeline.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class UsagePlanSettings(BaseModel):
    """Request quota attached to a usage plan."""

    quota_limit: int = 10000
    quota_period_seconds: int = 86400


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment (only used to build resource names)
    env: str = Field(default="dev")
    stage: str = Field(default="dev")
    account_id: Optional[str] = Field(default=None)
    region: str = Field(default="us-east-1")
    execution_role_arn: Optional[str] = Field(default=None)
    log_level: str = Field(default="info")

    # Backends
    queue_backend: str = Field(default="memory", description="memory | redis")
    store_backend: str = Field(default="memory", description="memory | postgres")
    quota_backend: str = Field(default="memory", description="memory | redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/pipeline")

    # Token authorizer
    jwks_url: str = Field(default="http://localhost:8080/realms/pipeline/protocol/openid-connect/certs")
    jwks_audience: Optional[str] = Field(default=None)
    jwks_issuer: Optional[str] = Field(default=None)
    required_scope: Optional[str] = Field(default=None)
    authorizer_cache_ttl_seconds: float = Field(default=0, ge=0)
    authorizer_cache_max_entries: int = Field(default=10000, gt=0)

    # Gateway
    gateway_timeout_seconds: float = Field(default=20.0, gt=0)
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    api_keys: Dict[str, str] = Field(default_factory=dict, description="API key -> usage plan name")
    usage_plans: Dict[str, UsagePlanSettings] = Field(
        default_factory=lambda: {"default": UsagePlanSettings()}
    )

    # Primary compute unit and outcome routing
    primary_handler: str = Field(default="service_dispatch.app.handlers:handle_date_request")
    enqueue_max_attempts: int = Field(default=3, ge=1)
    enqueue_base_delay: float = Field(default=0.2, ge=0)
    enqueue_max_delay: float = Field(default=5.0, ge=0)

    # Queues and batch consumer
    batch_size: int = Field(default=5, ge=1, le=5)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    receive_wait_seconds: float = Field(default=5.0, ge=0)
    visibility_timeout_seconds: float = Field(default=30.0, gt=0)
    max_receive_count: int = Field(default=5, ge=1)
    concurrent_writes: bool = Field(default=False)

    # Store
    index_lag_seconds: float = Field(default=0.0, ge=0)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4317")
    enable_console_tracing: bool = Field(default=False)

    def resource_name(self, kind: str) -> str:
        """Derive an environment-scoped resource name."""
        names = {
            "success_queue": "on-success-queue",
            "failure_queue": "on-failure-queue",
            "table": "employee-records",
            "index": "employee-age-designation-idx",
            "quota": "usage-plan-quota",
        }
        base = names.get(kind, kind)
        return f"{base}-{self.env}".lower().replace("_", "-")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
