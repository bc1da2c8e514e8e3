"""
Configuration loader for Agent Orchestra.

Loads configuration from a YAML file with support for
environment variable interpolation.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ErrorKind
from .models import (
    AppConfig,
    ExecutionConfig,
    LangfuseConfig,
    LoggingConfig,
    ModelConfig,
    RetryPolicy,
    SearxngConfig,
    ServerConfig,
    StoreConfig,
    ToolsConfig,
)
from .models.config import STORE_BACKENDS, TOOL_FORMATS

logger = logging.getLogger(__name__)

# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

# Regex for environment variable interpolation: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

# Singleton cache for app config
_app_config: Optional[AppConfig] = None


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    """Recursively substitute environment variables in a data structure."""
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _parse_retry_policy(data: dict, fallback: RetryPolicy) -> RetryPolicy:
    """Parse a retry policy, filling gaps from the call-site default."""
    kinds_data = data.get("retryable_error_kinds")
    if kinds_data is None:
        kinds = fallback.retryable_error_kinds
    else:
        try:
            kinds = frozenset(ErrorKind(k) for k in kinds_data)
        except ValueError as e:
            raise ValueError(f"Unknown error kind in retry policy: {e}") from e

    return RetryPolicy(
        max_attempts=int(data.get("max_attempts", fallback.max_attempts)),
        backoff_base=float(data.get("backoff_base", fallback.backoff_base)),
        backoff_cap=float(data.get("backoff_cap", fallback.backoff_cap)),
        retryable_error_kinds=kinds,
    )


def _parse_engine_config(data: dict) -> ExecutionConfig:
    """Parse engine configuration from dict."""
    return ExecutionConfig(
        max_iterations=int(data.get("max_iterations", 10)),
        timeout_seconds=int(data.get("timeout_seconds", 300)),
        tool_concurrency=_optional_int(data.get("tool_concurrency")),
        model_retry=_parse_retry_policy(
            data.get("model_retry") or {}, RetryPolicy.for_model_calls()
        ),
        tool_retry=_parse_retry_policy(
            data.get("tool_retry") or {}, RetryPolicy.for_tool_calls()
        ),
        store_retry=_parse_retry_policy(
            data.get("store_retry") or {}, RetryPolicy.for_store_writes()
        ),
    )


def _parse_model_config(data: dict) -> ModelConfig:
    """Parse model gateway configuration from dict."""
    defaults = ModelConfig()
    tool_format = data.get("tool_format", defaults.tool_format)
    if tool_format not in TOOL_FORMATS:
        raise ValueError(
            f"Unknown tool_format '{tool_format}', expected one of {TOOL_FORMATS}"
        )

    return ModelConfig(
        base_url=data.get("base_url", defaults.base_url),
        model=data.get("model", defaults.model),
        api_key=data.get("api_key") or defaults.api_key,
        temperature=float(data.get("temperature", defaults.temperature)),
        max_tokens=int(data.get("max_tokens", defaults.max_tokens)),
        request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
        tool_format=tool_format,
        system_prompt=data.get("system_prompt", defaults.system_prompt),
    )


def _parse_store_config(data: dict) -> StoreConfig:
    """Parse state store configuration from dict."""
    backend = data.get("backend", "memory")
    if backend not in STORE_BACKENDS:
        raise ValueError(
            f"Unknown store backend '{backend}', expected one of {STORE_BACKENDS}"
        )
    return StoreConfig(backend=backend, path=data.get("path", StoreConfig().path))


def _parse_tools_config(data: dict) -> ToolsConfig:
    """Parse tools configuration from dict."""
    searxng_data = data.get("searxng", {})
    enabled = data.get("enabled")

    return ToolsConfig(
        enabled=list(enabled) if enabled is not None else ToolsConfig().enabled,
        searxng=SearxngConfig(
            url=searxng_data.get("url", SearxngConfig().url),
            timeout=int(searxng_data.get("timeout", 30)),
        ),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server configuration from dict."""
    return ServerConfig(
        host=data.get("host", "0.0.0.0"),
        port=int(data.get("port", 8000)),
        workers=int(data.get("workers", 1)),
    )


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    """Parse Langfuse configuration from dict."""
    return LangfuseConfig(
        public_key=data.get("public_key", ""),
        secret_key=data.get("secret_key", ""),
        host=data.get("host", ""),
        flush_at=int(data.get("flush_at", 10)),
        flush_interval=float(data.get("flush_interval", 1.0)),
        debug=_as_bool(data.get("debug", False)),
    )


def parse_app_config(raw_config: dict, source_path: Optional[str] = None) -> AppConfig:
    """
    Build an AppConfig from an already-loaded mapping.

    Raises:
        ValueError: If any section holds an invalid value.
    """
    raw_config = _substitute_env_vars_recursive(raw_config)
    sections = {
        "engine": _parse_engine_config,
        "model": _parse_model_config,
        "store": _parse_store_config,
        "tools": _parse_tools_config,
        "server": _parse_server_config,
        "langfuse": _parse_langfuse_config,
    }
    parsed: dict[str, Any] = {}
    for name, parser in sections.items():
        try:
            parsed[name] = parser(raw_config.get(name) or {})
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid '{name}' configuration: {e}") from e

    logging_data = raw_config.get("logging") or {}
    return AppConfig(
        version=str(raw_config.get("version", "1.0")),
        logging=LoggingConfig(level=logging_data.get("level", "INFO")),
        source_path=source_path,
        **parsed,
    )


def load_app_config(path: Optional[str] = None, reload: bool = False) -> AppConfig:
    """
    Load unified application configuration from a YAML file.

    Uses a singleton pattern - subsequent calls return the cached config
    unless reload=True is specified.

    Args:
        path: Path to the YAML configuration file. If None, uses
              CONFIG_PATH env var or the default path (config/config.yaml).
        reload: If True, force reload from disk instead of using cache.

    Returns:
        AppConfig with all configuration loaded

    Raises:
        FileNotFoundError: If an explicitly requested config file doesn't exist
        ValueError: If the config is empty or invalid
    """
    global _app_config

    if _app_config is not None and not reload:
        return _app_config

    explicit = path is not None or "CONFIG_PATH" in os.environ
    if path is None:
        path = os.environ.get("CONFIG_PATH", str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Configuration file not found at {config_path}.")
        logger.warning("Config not found at %s, using built-in defaults", config_path)
        _app_config = AppConfig()
        return _app_config

    logger.info("Loading configuration from %s", config_path)

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Configuration file {config_path} is empty")

    app_config = parse_app_config(raw_config, source_path=str(config_path))
    _app_config = app_config

    logger.debug(
        "Configuration loaded: version=%s, store=%s, tools=%s",
        app_config.version,
        app_config.store.backend,
        app_config.tools.enabled,
    )
    return app_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _app_config
    _app_config = None
    logger.debug("Configuration cache reset")
