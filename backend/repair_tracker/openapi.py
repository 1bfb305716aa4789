"""Public import for the OpenAPI builder.

Served at /openapi.json; the document itself is assembled in
`openapi_builder.py`.
"""
from .openapi_builder import build_openapi_spec  # noqa: F401

__all__ = ["build_openapi_spec"]
