"""
SDK CI combine module.

Combines several OpenAPI documents into one before they are submitted to
the build API.
"""

from .combine import (
    CombineResult,
    ServerUrlStrategy,
    SpecLoader,
    combine_openapi_specs,
    find_files,
    load_yaml,
)

__all__ = [
    "CombineResult",
    "ServerUrlStrategy",
    "SpecLoader",
    "combine_openapi_specs",
    "find_files",
    "load_yaml",
]
