"""
Configuration models for the agent loop.

Defines dataclasses for the unified YAML configuration file.
"""

from dataclasses import dataclass, field


@dataclass
class ModelConfig:
    """Configuration for the OpenAI-compatible model endpoint."""
    base_url: str = "http://localhost:8001/v1"
    model: str = "nvidia/Nemotron-Orchestrator-8B"
    api_key: str = "not-needed"
    temperature: float = 0.7
    max_output_tokens: int = 0
    timeout: float = 120.0


@dataclass
class AgentSettings:
    """Agent defaults; ``max_steps`` of 0 means no step limit."""
    system_prompt: str = ""
    max_steps: int = 10
    max_retries: int = 2
    retry_initial_delay: float = 2.0
    retry_backoff_factor: float = 2.0


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    enabled: bool = False
    public_key: str = ""
    secret_key: str = ""
    host: str = "https://cloud.langfuse.com"
    debug: bool = False

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Unified application configuration container.

    Holds all configuration sections loaded from a YAML config file.
    """
    version: str = "1.0"
    model: ModelConfig = field(default_factory=ModelConfig)
    agent: AgentSettings = field(default_factory=AgentSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)

    @property
    def log_level(self) -> str:
        """Shortcut for logging.level."""
        return self.logging.level
