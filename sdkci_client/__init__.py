"""
SDK CI client module.

HTTP implementation of the build API interface defined in sdkci_common.
"""

__version__ = "0.1.0"

from .client import BuildAPIClient, is_no_changes_error  # noqa: E402

__all__ = ["BuildAPIClient", "is_no_changes_error", "__version__"]
