"""HTTP server for repositories, log stores and deployment packages."""

from .app import create_app

__all__ = ["create_app"]
