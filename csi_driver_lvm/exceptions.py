"""Exceptions related to the csi-driver-lvm extension."""

__all__ = [
    "CsiDriverLvmException",
    "InputException",
    "DecodeError",
    "InvalidConfigError",
    "ImageResolutionError",
    "SerializationError",
    "APIError",
    "TimeoutException",
    "DeleteTimeoutError",
    "HealthTimeoutError",
    "ResourceFailedError",
]


class CsiDriverLvmException(Exception):
    """Generic base exception used for this library."""


class InputException(CsiDriverLvmException):
    """Raised when the input files or values are not formatted as expected."""


class DecodeError(InputException):
    """Raised when the provider config of an Extension cannot be decoded."""


class InvalidConfigError(InputException):
    """Raised when a merged configuration cannot be used to build resources."""


class ImageResolutionError(CsiDriverLvmException):
    """Raised when a symbolic image name has no image reference."""

    def __init__(self, image_name: str, message: str | None = None) -> None:
        super().__init__(
            f"Failed to find {image_name} image: {message or 'not in image vector'}"
        )
        self.image_name = image_name


class SerializationError(CsiDriverLvmException):
    """Raised when objects cannot be encoded into a managed resource bundle."""


class APIError(CsiDriverLvmException):
    """Raised when the orchestration API rejects a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TimeoutException(CsiDriverLvmException):
    """Raised when a bounded wait expires."""


class DeleteTimeoutError(TimeoutException):
    """Raised when a managed resource was not removed before the deadline."""

    def __init__(self, resource_name: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout}s waiting for {resource_name} to be deleted"
        )
        self.resource_name = resource_name
        self.timeout = timeout


class HealthTimeoutError(TimeoutException):
    """Raised when a managed resource did not become healthy before the deadline."""

    def __init__(self, resource_name: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout}s waiting for {resource_name} to be healthy"
        )
        self.resource_name = resource_name
        self.timeout = timeout


class ResourceFailedError(CsiDriverLvmException):
    """Raised when a managed resource reports a failed condition."""

    def __init__(self, resource_name: str, message: str | None) -> None:
        super().__init__(
            f"Resource {resource_name} failed: {message or 'Unknown error'}"
        )
        self.resource_name = resource_name
        self.message = message
