"""
Configuration Loader

Reads the service YAML file, substitutes ${VAR} / ${VAR:-default} references
from the environment, and validates the result into DlqIntelSettings.
Namespace connection strings are secrets and are expected to arrive this way.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import structlog
import yaml

from dlq_intel.config.settings import DlqIntelSettings

logger = structlog.get_logger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class UnresolvedVariableError(ValueError):
    """A ${VAR} reference with no default names an unset environment variable"""


def expand_env_references(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """
    Substitute environment references in every string of a parsed YAML tree

    Args:
        value: Scalar, list or mapping from yaml.safe_load
        environ: Variables to read (defaults to os.environ)

    Raises:
        UnresolvedVariableError: If a reference without a default is unset
    """
    env = os.environ if environ is None else environ

    if isinstance(value, dict):
        return {key: expand_env_references(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_references(item, env) for item in value]
    if not isinstance(value, str):
        return value

    def substitute(match: "re.Match[str]") -> str:
        name, default = match.group(1), match.group(2)
        if name in env:
            return env[name]
        if default is not None:
            return default
        raise UnresolvedVariableError(f"Environment variable '{name}' is not set")

    return _ENV_REFERENCE.sub(substitute, value)


def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """
    Parse a YAML config file into a dict; an empty file yields {}

    Raises:
        FileNotFoundError: If the file does not exist
        yaml.YAMLError: If the file is not valid YAML
    """
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with path.open("r", encoding="utf-8") as f:
        try:
            document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error("Configuration file is not valid YAML", path=file_path, error=str(e))
            raise

    if document is None:
        logger.warning("Configuration file is empty", path=file_path)
        return {}
    return document


def merge_configs(*configs: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Deep-merge config dicts; later values win, nested sections merge key by key"""
    merged: Dict[str, Any] = {}
    for config in filter(None, configs):
        _merge_into(merged, config)
    return merged


def _merge_into(target: Dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            _merge_into(existing, value)
        else:
            target[key] = value


def load_config(config_path: Optional[str] = None, *overrides: Dict[str, Any]) -> DlqIntelSettings:
    """
    Build the service settings

    Without a path, every section reads its DLQ_* environment variables.
    With a path, the YAML file is expanded, merged with any overrides and
    validated; file values take precedence over section environment variables.

    Raises:
        FileNotFoundError: If config_path does not exist
        UnresolvedVariableError: If the file references an unset variable
        pydantic.ValidationError: If the merged settings are invalid
    """
    if not config_path:
        config = DlqIntelSettings()
        logger.info("Configuration loaded", source="environment", store=config.store.backend)
        return config

    document = expand_env_references(load_yaml_config(config_path))
    config = DlqIntelSettings(**merge_configs(document, *overrides))
    logger.info(
        "Configuration loaded",
        source=config_path,
        store=config.store.backend,
        namespaces=len(config.namespaces),
        unconfigured_namespaces=[ns.id for ns in config.namespaces if not ns.connection_string],
    )
    return config
