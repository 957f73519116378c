"""
Configuration management for the agent loop.

Loads configuration from environment variables (and a ``.env`` file, if
present) with sensible defaults for local development against a vLLM
endpoint. Used when no YAML configuration file is available.
"""

import logging
import os

from dotenv import load_dotenv

from .config_models import (
    AgentSettings,
    AppConfig,
    LangfuseConfig,
    LoggingConfig,
    ModelConfig,
)

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default).lower()).lower() == "true"


def get_config() -> AppConfig:
    """Get the application configuration from the current environment.

    Langfuse tracing auto-enables when both LANGFUSE_PUBLIC_KEY and
    LANGFUSE_SECRET_KEY are set.
    """
    public_key = os.getenv("LANGFUSE_PUBLIC_KEY", "")
    secret_key = os.getenv("LANGFUSE_SECRET_KEY", "")
    return AppConfig(
        version="env",
        model=ModelConfig(
            base_url=os.getenv("MODEL_BASE_URL", "http://localhost:8001/v1"),
            model=os.getenv("MODEL_NAME", "nvidia/Nemotron-Orchestrator-8B"),
            api_key=os.getenv("MODEL_API_KEY", "not-needed"),
            temperature=_env_float("MODEL_TEMPERATURE", 0.7),
            max_output_tokens=_env_int("MODEL_MAX_OUTPUT_TOKENS", 0),
            timeout=_env_float("MODEL_TIMEOUT", 120.0),
        ),
        agent=AgentSettings(
            system_prompt=os.getenv("AGENT_SYSTEM_PROMPT", ""),
            max_steps=_env_int("AGENT_MAX_STEPS", 10),
            max_retries=_env_int("AGENT_MAX_RETRIES", 2),
            retry_initial_delay=_env_float("AGENT_RETRY_INITIAL_DELAY", 2.0),
            retry_backoff_factor=_env_float("AGENT_RETRY_BACKOFF_FACTOR", 2.0),
        ),
        logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO")),
        langfuse=LangfuseConfig(
            enabled=bool(public_key and secret_key),
            public_key=public_key,
            secret_key=secret_key,
            host=os.getenv("LANGFUSE_HOST", ""),
            debug=_env_bool("LANGFUSE_DEBUG", False),
        ),
    )


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging at ``level`` (a level name such as ``"DEBUG"``)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Set level for our modules
    logging.getLogger("agent_loop").setLevel(log_level)
