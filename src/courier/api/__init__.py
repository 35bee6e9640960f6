"""HTTP surface: FastAPI app factory, routers and response envelopes."""

from courier.api.app import create_app

__all__ = ["create_app"]
