"""Shared FastAPI dependencies resolving services built during startup."""

from __future__ import annotations

from fastapi import Request

from mint_engine.core.database import Database
from mint_engine.jobs.dispatch import StepRegistry
from mint_engine.services.auth import AuthService
from mint_engine.services.gallery import GalleryService
from mint_engine.services.mint import MintOrchestrator


def get_orchestrator(request: Request) -> MintOrchestrator:
  return request.app.state.orchestrator


def get_auth_service(request: Request) -> AuthService:
  return request.app.state.auth_service


def get_gallery_service(request: Request) -> GalleryService:
  return request.app.state.gallery_service


def get_step_registry(request: Request) -> StepRegistry:
  return request.app.state.step_registry


def get_database(request: Request) -> Database | None:
  """Return the connected database, or None when startup ran without one."""
  return getattr(request.app.state, "database", None)
