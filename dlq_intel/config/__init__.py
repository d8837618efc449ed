"""
Configuration: pydantic settings models and YAML loading
"""

from dlq_intel.config.loader import (
    UnresolvedVariableError,
    expand_env_references,
    load_config,
    load_yaml_config,
    merge_configs,
)
from dlq_intel.config.settings import (
    ApiSettings,
    BrokerSettings,
    DlqIntelSettings,
    NamespaceSettings,
    ObservabilitySettings,
    ReplaySettings,
    RulesSettings,
    ScannerSettings,
    StoreSettings,
)

__all__ = [
    "UnresolvedVariableError",
    "expand_env_references",
    "load_config",
    "load_yaml_config",
    "merge_configs",
    "ApiSettings",
    "BrokerSettings",
    "DlqIntelSettings",
    "NamespaceSettings",
    "ObservabilitySettings",
    "ReplaySettings",
    "RulesSettings",
    "ScannerSettings",
    "StoreSettings",
]
