"""Custom exceptions for object store, upload and catalog operations."""


class StreamVaultException(Exception):
    """Base exception for StreamVault."""
    pass


class ObjectStoreError(StreamVaultException):
    """Exception raised when a remote object store call fails.

    Attributes:
        status: HTTP status reported by the store, if any
        code: Store-specific error code, if any
    """

    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status = status
        self.code = code


class TransientStoreError(ObjectStoreError):
    """Exception raised for rate limiting or temporary capacity shortage."""
    pass


class AuthExpiredError(ObjectStoreError):
    """Exception raised when an authorization token is rejected or expired."""
    pass


class ObjectNotFoundError(ObjectStoreError):
    """Exception raised when an object or prefix does not exist."""
    pass


class UploadError(StreamVaultException):
    """Exception raised when an upload cannot be completed."""
    pass


class MultipartConsistencyError(UploadError):
    """Exception raised when a multipart session is missing a part hash."""
    pass


class EncodingError(StreamVaultException):
    """Exception raised when the rendition encoder fails."""
    pass


class CatalogError(StreamVaultException):
    """Exception raised when a catalog write violates an invariant."""
    pass


class InvalidRequestError(StreamVaultException):
    """Exception raised when request fields are missing or malformed."""
    pass
