"""HTTP trigger routes (FastAPI)."""

from idxalerts.api.app import ForceRunRequest, create_app

__all__ = ["create_app", "ForceRunRequest"]
