"""Error taxonomy for storage operations.

Provider answers are classified by error code first and HTTP status second,
and re-expressed as messages a person configuring a bucket can act on.
Raw response bodies never end up in an exception message.
"""


class S3OperationError(Exception):
    """Base class for every failure surfaced by the storage client."""

    def __init__(self, message, status=None, code=None, action=None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.action = action

    @property
    def message(self):
        return self.args[0] if self.args else ""


class NotFoundError(S3OperationError):
    """The object or resource does not exist."""


class AccessDeniedError(S3OperationError):
    """The credentials are valid but not allowed to do this."""


class InvalidCredentialsError(S3OperationError):
    """Unknown access key or a signature the provider could not verify."""


class BucketNotFoundError(S3OperationError):
    """The bucket named in the credentials does not exist."""


class UploadSessionExpiredError(S3OperationError):
    """The multipart upload id is unknown to the provider."""


class ClockSkewError(S3OperationError):
    """The request timestamp is too far from the provider's clock."""


class MalformedAuthError(S3OperationError):
    """The provider rejected the shape of the Authorization header."""


class TransportError(S3OperationError):
    """The request failed before any response was received."""


class ProtocolError(S3OperationError):
    """The provider answered with something this client cannot interpret."""


class MultipartStateError(S3OperationError):
    """A multipart session was used after it completed or was aborted."""


_ACCESS_DENIED = (
    "Access denied: check the key permissions, Account ID and bucket permissions."
)
_NOT_FOUND = "Target does not exist: check the bucket name, path or file name."


def _classify(status, code, message, action):
    normalized = f"{code or ''} {message or ''}".lower()

    if "invalidaccesskeyid" in normalized:
        return (
            InvalidCredentialsError,
            "Access Key ID is invalid, check the Access Key ID.",
        )
    if "signaturedoesnotmatch" in normalized:
        return (
            InvalidCredentialsError,
            "Signature check failed: the Secret Access Key, Account ID or "
            "bucket name may be wrong.",
        )
    if "nosuchbucket" in normalized:
        return (
            BucketNotFoundError,
            "Bucket does not exist, check the R2 bucket name.",
        )
    if "accessdenied" in normalized:
        return AccessDeniedError, _ACCESS_DENIED
    if "authorizationheadermalformed" in normalized:
        return (
            MalformedAuthError,
            "Malformed authorization: the Account ID or signing parameters "
            "may be wrong.",
        )
    if "requesttimetooskewed" in normalized:
        return (
            ClockSkewError,
            "Signature rejected because the system clock is too far off, "
            "synchronize the clock and retry.",
        )
    if "nosuchupload" in normalized:
        return (
            UploadSessionExpiredError,
            "Multipart upload no longer exists, it may have expired or been "
            "aborted. Start a new upload.",
        )
    if "nosuchkey" in normalized:
        return NotFoundError, _NOT_FOUND

    # Bare statuses only count once no known code matched.
    if status == 403:
        return AccessDeniedError, _ACCESS_DENIED
    if status == 404:
        return NotFoundError, _NOT_FOUND
    if message:
        return S3OperationError, f"R2 {action} failed: {message}"
    return (
        S3OperationError,
        f"R2 {action} failed, check the bucket configuration and keys.",
    )


def translate_error(status, code, message, action):
    """Map a provider answer onto the error taxonomy.

    ``status`` is the HTTP status (or None), ``code`` and ``message`` come
    from the ``<Error>`` body when there was one.
    """
    cls, text = _classify(status, code, message, action)
    return cls(text, status=status, code=code or None, action=action)


def transport_error(exc, action):
    """Wrap a network-level failure raised by the HTTP client."""
    detail = str(exc) or exc.__class__.__name__
    return TransportError(
        f"R2 {action} failed: network error ({detail}).", action=action
    )
