"""Exception types shared by the sdkci packages."""


class SDKCIError(Exception):
    """Base class for all sdkci errors."""


class ConfigurationError(SDKCIError, ValueError):
    """
    Raised for invalid or conflicting action inputs.

    These are detected before any request is made to the build API.
    """


class BuildAPIError(SDKCIError, RuntimeError):
    """A request to the build API failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(BuildAPIError):
    """The requested build API resource does not exist (HTTP 404)."""


class CombineError(SDKCIError):
    """OpenAPI documents could not be combined."""
