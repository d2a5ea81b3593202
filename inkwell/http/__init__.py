"""Starlette adapter exposing the authentication core over JSON."""

from .app import app_from_config, create_app
from .guard import gate
from .router import Router, protected

__all__ = ["Router", "app_from_config", "create_app", "gate", "protected"]
