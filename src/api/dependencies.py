"""FastAPI dependency injection for the Evaluatoor API.

The run manager and the backend client are initialized once at startup
and injected into route handlers via FastAPI's Depends().
"""

from __future__ import annotations

from fastapi import HTTPException

from src.api.runner import RunManager
from src.ollama_client import OllamaClient


# ---------------------------------------------------------------------------
# Singleton instances (initialized in app lifespan)
# ---------------------------------------------------------------------------

_run_manager: RunManager | None = None
_client: OllamaClient | None = None


def init_dependencies(run_manager: RunManager, client: OllamaClient) -> None:
    """Initialize shared dependency instances. Called once at app startup."""
    global _run_manager, _client
    _run_manager = run_manager
    _client = client


def reset_dependencies() -> None:
    global _run_manager, _client
    _run_manager = None
    _client = None


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_run_manager() -> RunManager:
    """Get the shared run manager instance."""
    if _run_manager is None:
        raise HTTPException(status_code=500, detail="Run manager not initialized")
    return _run_manager


def get_client() -> OllamaClient:
    """Get the shared backend client instance."""
    if _client is None:
        raise HTTPException(status_code=500, detail="Backend client not initialized")
    return _client
