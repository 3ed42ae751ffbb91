"""HTTP surface for Routewise."""

from routewise.api.server import create_app

__all__ = ["create_app"]
