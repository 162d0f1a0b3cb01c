"""Read-only HTTP status API."""

from candlebot.api.app import create_api_app

__all__ = ["create_api_app"]
