"""
SDK CI actions - build, preview, merge and combine commands for CI runs.
"""

from .build import BuildParams, run_build
from .merge import MergeParams, run_merge
from .preview import PreviewParams, run_preview
from .wrap import ActionContext, wrap_action

__all__ = [
    "ActionContext",
    "BuildParams",
    "MergeParams",
    "PreviewParams",
    "run_build",
    "run_merge",
    "run_preview",
    "wrap_action",
]
