"""FastAPI dependencies shared by the routers."""

import threading

from fastapi import Request

from ..factory import build_engine
from ..orchestration import ExecutionEngine

_engine_lock = threading.Lock()


def get_engine(request: Request) -> ExecutionEngine:
    """Engine stored on the app, built from configuration on first use."""
    with _engine_lock:
        engine = getattr(request.app.state, "engine", None)
        if engine is None:
            engine = build_engine()
            request.app.state.engine = engine
        return engine
