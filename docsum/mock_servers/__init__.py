"""Mock API servers for testing."""

from .app import create_app, create_mock_app, serve

__all__ = ["create_app", "create_mock_app", "serve"]
