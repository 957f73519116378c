"""
Configuration loader for the agent loop.

Loads configuration from YAML files with support for
environment variable interpolation, and builds agents from it.
"""

import logging
import os
import re
import uuid
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from .config import get_config, setup_logging
from .config_models import (
    AgentSettings,
    AppConfig,
    LangfuseConfig,
    LoggingConfig,
    ModelConfig,
)
from .orchestration import Agent, step_count_is
from .providers import OpenAICompatModel
from .tools import AgentTool
from .tracing import TracingContext, get_tracing_client, init_tracing_client

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

    Args:
        value: String potentially containing env var references

    Returns:
        String with env vars resolved
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
        return value.lower() == "true"
    return bool(value)


def _parse_model_config(data: dict) -> ModelConfig:
    """Parse model endpoint configuration from dict."""
    return ModelConfig(
        base_url=data.get("base_url", "http://localhost:8001/v1"),
        model=data.get("model", "nvidia/Nemotron-Orchestrator-8B"),
        api_key=data.get("api_key") or "not-needed",
        temperature=float(data.get("temperature", 0.7)),
        max_output_tokens=int(data.get("max_output_tokens", 0)),
        timeout=float(data.get("timeout", 120.0)),
    )


def _parse_agent_settings(data: dict) -> AgentSettings:
    """Parse agent configuration from dict."""
    return AgentSettings(
        system_prompt=data.get("system_prompt", ""),
        max_steps=int(data.get("max_steps", 10)),
        max_retries=int(data.get("max_retries", 2)),
        retry_initial_delay=float(data.get("retry_initial_delay", 2.0)),
        retry_backoff_factor=float(data.get("retry_backoff_factor", 2.0)),
    )


def _parse_logging_config(data: dict) -> LoggingConfig:
    """Parse logging configuration from dict."""
    return LoggingConfig(
        level=data.get("level", "INFO"),
    )


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    """Parse Langfuse configuration from dict."""
    return LangfuseConfig(
        enabled=_as_bool(data.get("enabled", False)),
        public_key=data.get("public_key", ""),
        secret_key=data.get("secret_key", ""),
        host=data.get("host", "https://cloud.langfuse.com"),
        debug=_as_bool(data.get("debug", False)),
    )


def validate_app_config(app_config: AppConfig) -> list[str]:
    """
    Validate an application configuration.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    if not app_config.model.base_url:
        errors.append("model: missing base_url")
    if not app_config.model.model:
        errors.append("model: missing model")
    if app_config.agent.max_steps < 0:
        errors.append("agent: max_steps must not be negative")
    if app_config.agent.max_retries < 0:
        errors.append("agent: max_retries must not be negative")
    if app_config.langfuse.enabled and not app_config.langfuse.is_configured:
        errors.append("langfuse: enabled but public_key/secret_key missing")
    return errors


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
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config is invalid
    """
    global _app_config

    # Return cached config if available and not reloading
    if _app_config is not None and not reload:
        return _app_config

    if path is None:
        path = os.environ.get("CONFIG_PATH", str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found at {config_path}. "
            f"Create one from config/config.yaml.template or set CONFIG_PATH env var."
        )

    logger.info("Loading configuration from %s", config_path)

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Configuration file {config_path} is empty")

    # Substitute environment variables throughout the config
    raw_config = _substitute_env_vars_recursive(raw_config)

    try:
        app_config = AppConfig(
            version=str(raw_config.get("version", "1.0")),
            model=_parse_model_config(raw_config.get("model") or {}),
            agent=_parse_agent_settings(raw_config.get("agent") or {}),
            logging=_parse_logging_config(raw_config.get("logging") or {}),
            langfuse=_parse_langfuse_config(raw_config.get("langfuse") or {}),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e

    for error in validate_app_config(app_config):
        logger.warning("Config validation warning: %s", error)

    _app_config = app_config

    logger.debug(
        "Configuration loaded: version=%s, model=%s",
        app_config.version,
        app_config.model.model,
    )

    return app_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _app_config
    _app_config = None
    logger.debug("Configuration cache reset")


def build_agent_from_config(
    app_config: Optional[AppConfig] = None,
    tools: Optional[Iterable[AgentTool]] = None,
    execution_id: Optional[str] = None,
) -> Agent:
    """
    Build an agent over the configured OpenAI-compatible endpoint.

    Applies the configured log level, sampling, retry policy and step
    limit. Without an explicit config, the YAML file is loaded; if there is
    none, settings come from the environment (``get_config``). When
    Langfuse is enabled and configured, the global tracing client is
    initialized (once) and the agent gets a run-scoped tracing context.

    Args:
        app_config: Configuration to use. If None, loads the YAML file or
            falls back to the environment.
        tools: Tools available to the agent.
        execution_id: Identifier used in log lines and traces.
    """
    if app_config is None:
        try:
            app_config = load_app_config()
        except FileNotFoundError:
            logger.info("No configuration file found, using environment configuration")
            app_config = get_config()

    setup_logging(app_config.log_level)

    model_config = app_config.model
    settings = app_config.agent

    model = OpenAICompatModel(
        model_id=model_config.model,
        base_url=model_config.base_url,
        api_key=model_config.api_key,
        timeout=model_config.timeout,
    )

    tracing_context = None
    langfuse = app_config.langfuse
    if langfuse.enabled and langfuse.is_configured:
        if get_tracing_client() is None:
            init_tracing_client(
                public_key=langfuse.public_key,
                secret_key=langfuse.secret_key,
                host=langfuse.host,
                debug=langfuse.debug,
            )
        tracing_context = TracingContext(run_id=execution_id or str(uuid.uuid4()))

    stop_when = [step_count_is(settings.max_steps)] if settings.max_steps > 0 else []

    logger.debug(
        "Building agent: model=%s base_url=%s max_steps=%d max_retries=%d",
        model_config.model,
        model_config.base_url,
        settings.max_steps,
        settings.max_retries,
    )

    return Agent(
        model,
        system_prompt=settings.system_prompt,
        tools=tools,
        stop_when=stop_when,
        max_retries=settings.max_retries,
        retry_initial_delay=settings.retry_initial_delay,
        retry_backoff_factor=settings.retry_backoff_factor,
        max_output_tokens=model_config.max_output_tokens or None,
        temperature=model_config.temperature,
        tracing_context=tracing_context,
        execution_id=execution_id,
    )
