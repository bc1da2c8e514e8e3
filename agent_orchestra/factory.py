"""
Wiring for the Execution Engine.

Builds the Model Gateway, State Store and Tool Registry named in an
``AppConfig`` and assembles them into an ``ExecutionEngine``.
"""

import logging
from typing import Optional

from .config_loader import load_app_config
from .gateway import ModelGateway, OpenAIModelGateway
from .models import AppConfig, ModelConfig, StoreConfig, ToolsConfig
from .orchestration import ExecutionEngine
from .retry import RetryGovernor
from .store import InMemoryStateStore, JsonFileStateStore, StateStore
from .tools import ToolRegistry, register_builtin_tools

logger = logging.getLogger(__name__)


def build_gateway(model_config: ModelConfig) -> ModelGateway:
    logger.debug(
        "Model gateway: %s at %s (%s tool format)",
        model_config.model,
        model_config.base_url,
        model_config.tool_format,
    )
    return OpenAIModelGateway(model_config)


def build_store(store_config: StoreConfig) -> StateStore:
    """
    Raises:
        ValueError: Unknown store backend.
    """
    if store_config.backend == "memory":
        return InMemoryStateStore()
    if store_config.backend == "file":
        return JsonFileStateStore(store_config.path)
    raise ValueError(f"Unknown store backend '{store_config.backend}'")


def build_registry(tools_config: ToolsConfig) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, tools_config)
    return registry


def build_engine(
    app_config: Optional[AppConfig] = None,
    gateway: Optional[ModelGateway] = None,
    registry: Optional[ToolRegistry] = None,
    store: Optional[StateStore] = None,
) -> ExecutionEngine:
    """
    Create an engine from configuration.

    Any collaborator passed explicitly is used instead of the configured one.
    """
    app_config = app_config or load_app_config()
    engine = ExecutionEngine(
        gateway=gateway or build_gateway(app_config.model),
        registry=registry or build_registry(app_config.tools),
        store=store or build_store(app_config.store),
        governor=RetryGovernor(),
        default_config=app_config.engine,
    )
    logger.info(
        "Engine ready: store=%s, tools=%s, max_iterations=%d",
        type(engine.store).__name__,
        engine.registry.names(),
        app_config.engine.max_iterations,
    )
    logger.debug("Registered tools:\n%s", engine.registry.get_tools_summary())
    return engine
