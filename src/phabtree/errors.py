"""Error types raised while talking to Phabricator and building task trees."""

from typing import Optional


class PhabError(Exception):
    """Base class for all phabtree errors."""

    kind = "Error"


class FetchError(PhabError):
    """A failure while fetching task data from the Conduit API."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class NotFoundError(FetchError):
    """The service has no task with the requested id."""

    kind = "NotFound"


class UnauthorizedError(FetchError):
    """The API token or client certificate was rejected."""

    kind = "Unauthorized"


class TransportError(FetchError):
    """Network or TLS level failure."""

    kind = "Transport"


class DecodeError(FetchError):
    """The response could not be parsed into a task."""

    kind = "Decode"


class ConfigError(PhabError):
    """Missing or invalid configuration."""

    kind = "Config"


class CertificateIdentityError(PhabError):
    """The PKCS#12 client certificate could not be loaded."""

    kind = "CertificateIdentity"

    def __init__(self, pkcs12_path: str, message: str):
        super().__init__(f"Certificate identity path: {pkcs12_path}, error: {message}")
        self.pkcs12_path = pkcs12_path
        self.message = message
