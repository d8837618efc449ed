"""
Pydantic Settings Models for DLQ Intelligence Configuration
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """History store configuration"""

    backend: str = Field(default="memory", pattern="^(memory|postgres)$")
    connection_url: Optional[str] = Field(
        default=None, description="Postgres conninfo or URL (postgres backend only)"
    )
    initialize_schema: bool = Field(default=True, description="Create tables on connect")

    model_config = SettingsConfigDict(env_prefix="DLQ_STORE_")


class ScannerSettings(BaseSettings):
    """Adaptive scan scheduler tuning"""

    enabled: bool = Field(default=True)
    initial_delay_seconds: float = Field(default=5, ge=0)
    active_interval_seconds: float = Field(default=30, gt=0)
    inactive_interval_seconds: float = Field(default=300, gt=0)
    max_parallel_scans: int = Field(default=10, ge=1, le=100)
    peek_batch_size: int = Field(default=100, ge=1, le=5000, description="Messages per peek")
    body_preview_length: int = Field(default=500, ge=0, le=10000)

    model_config = SettingsConfigDict(env_prefix="DLQ_SCANNER_")


class ReplaySettings(BaseSettings):
    """Replay execution configuration"""

    rate_limit_window_seconds: int = Field(default=3600, ge=1)

    model_config = SettingsConfigDict(env_prefix="DLQ_REPLAY_")


class RulesSettings(BaseSettings):
    """Rule engine and rule test configuration"""

    regex_timeout_seconds: float = Field(default=1.0, gt=0, le=60)
    test_sample_size: int = Field(default=10, ge=1, le=100)
    test_default_max_messages: int = Field(default=100, ge=1)
    test_max_messages_ceiling: int = Field(default=1000, ge=1)

    model_config = SettingsConfigDict(env_prefix="DLQ_RULES_")


class ApiSettings(BaseSettings):
    """HTTP API configuration"""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    max_page_size: int = Field(default=200, ge=1)
    default_page_size: int = Field(default=50, ge=1)
    export_max_rows: int = Field(default=10000, ge=1)

    model_config = SettingsConfigDict(env_prefix="DLQ_API_")


class BrokerSettings(BaseSettings):
    """Broker client configuration"""

    client_factory: Optional[str] = Field(
        default=None,
        description="Importable 'module:callable' building a broker client for a namespace",
    )

    model_config = SettingsConfigDict(env_prefix="DLQ_BROKER_")

    @field_validator("client_factory")
    @classmethod
    def validate_factory_path(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v.count(":") != 1:
            raise ValueError("client_factory must look like 'package.module:callable'")
        return v


class NamespaceSettings(BaseModel):
    """One monitored broker namespace"""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    connection_string: str = Field(default="")
    active: bool = Field(default=True)


class ObservabilitySettings(BaseSettings):
    """Metrics, logging, and tracing configuration"""

    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field(default="json", pattern="^(json|console)$")
    enable_tracing: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="DLQ_")


class DlqIntelSettings(BaseSettings):
    """Complete DLQ intelligence service configuration"""

    store: StoreSettings = Field(default_factory=StoreSettings)
    scanner: ScannerSettings = Field(default_factory=ScannerSettings)
    replay: ReplaySettings = Field(default_factory=ReplaySettings)
    rules: RulesSettings = Field(default_factory=RulesSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    namespaces: List[NamespaceSettings] = Field(default_factory=list)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_prefix="DLQ_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("namespaces")
    @classmethod
    def validate_unique_namespaces(cls, v: List[NamespaceSettings]) -> List[NamespaceSettings]:
        ids = [ns.id for ns in v]
        if len(ids) != len(set(ids)):
            raise ValueError("namespace ids must be unique")
        return v
