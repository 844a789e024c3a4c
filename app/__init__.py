"""Game library curation service: embeddings, sampling, routing and generation."""

from __future__ import annotations

from importlib import import_module
from typing import Any

# Resolved lazily so importing a submodule never builds the FastAPI app.
_EXPORTS = {
    "app": "app.main",
    "create_app": "app.main",
    "CurationService": "app.services.curator",
}

__all__ = list(_EXPORTS)


def __getattr__(name: str) -> Any:
    try:
        module_name = _EXPORTS[name]
    except KeyError:
        raise AttributeError(f"module 'app' has no attribute {name}") from None
    return getattr(import_module(module_name), name)
