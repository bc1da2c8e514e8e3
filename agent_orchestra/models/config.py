"""
Configuration models for Agent Orchestra.

Defines dataclasses for the unified YAML configuration file.
"""

from dataclasses import dataclass, field
from typing import Optional

from .execution import ExecutionConfig

TOOL_FORMATS = ("native", "chatml")
STORE_BACKENDS = ("memory", "file")


@dataclass
class ModelConfig:
    """Configuration for the reasoning endpoint (any OpenAI-compatible server)."""
    base_url: str = "http://localhost:8001/v1"
    model: str = "gpt-4o-mini"
    api_key: str = "not-needed"
    temperature: float = 0.2
    max_tokens: int = 2048
    request_timeout: float = 60.0
    tool_format: str = "native"
    system_prompt: str = "You are good at using tools."


@dataclass
class StoreConfig:
    """Configuration for the execution state store."""
    backend: str = "memory"
    path: str = "./data/executions"


@dataclass
class SearxngConfig:
    """Configuration for the SearXNG search endpoint."""
    url: str = "http://localhost:8080/search"
    timeout: int = 30


@dataclass
class ToolsConfig:
    """Which built-in tools to register and where they connect."""
    enabled: list[str] = field(default_factory=lambda: ["calculate"])
    searxng: SearxngConfig = field(default_factory=SearxngConfig)


@dataclass
class ServerConfig:
    """Configuration for the FastAPI server."""
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    public_key: str = ""
    secret_key: str = ""
    host: str = ""
    flush_at: int = 10
    flush_interval: float = 1.0
    debug: bool = False

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Unified application configuration container.

    Holds all configuration sections loaded from config/config.yaml.
    """
    version: str = "1.0"
    engine: ExecutionConfig = field(default_factory=ExecutionConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)
    source_path: Optional[str] = None
