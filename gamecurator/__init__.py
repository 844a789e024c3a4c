"""Installable entry package for the game curator service."""

from __future__ import annotations

from app import CurationService, app, create_app

__all__ = ["app", "create_app", "CurationService"]
