"""Classify AWS backend errors into the control plane error taxonomy.

botocore raises ClientError with the service error code in
``exc.response["Error"]["Code"]``. The code is looked up in a fixed table;
unknown codes become BadRequest carrying the AWS message, and exceptions that
are not AWS errors become Internal.
"""

from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError

from dsapi.errors import ApiError, ErrorKind, OperationCancelledError
from dsapi.observability.metrics import backend_errors_counter

logger = logging.getLogger(__name__)

FORBIDDEN_CODES = frozenset(
    {
        "AccessDenied",
        "AccountProblem",
        "AllAccessDisabled",
        "Forbidden",
        "InvalidAccessKeyId",
    }
)

CONFLICT_CODES = frozenset(
    {
        # IAM
        "ConcurrentModification",
        "DeleteConflict",
        "DuplicateCertificate",
        "DuplicateSSHPublicKey",
        "EntityAlreadyExists",
        # S3
        "BucketAlreadyExists",
        "BucketAlreadyOwnedByYou",
        "BucketNotEmpty",
        "InvalidBucketState",
        "OperationAborted",
        "RestoreAlreadyInProgress",
        # CloudWatch Logs
        "ResourceAlreadyExistsException",
    }
)

NOT_FOUND_CODES = frozenset(
    {
        "NoSuchEntity",
        "NoSuchBucket",
        "NoSuchKey",
        "NoSuchUpload",
        "NotFound",
        "NoSuchBucketPolicy",
        "NoSuchLifecycleConfiguration",
        "NoSuchVersion",
        "NoSuchTagSet",
        "InvalidInstanceID.NotFound",
        "ResourceNotFoundException",
    }
)

BAD_REQUEST_CODES = frozenset(
    {
        # IAM
        "ReportExpired",
        "ReportNotPresent",
        "ReportInProgress",
        "EntityTemporarilyUnmodifiable",
        "InvalidAuthenticationCode",
        "InvalidCertificate",
        "InvalidInput",
        "InvalidPublicKey",
        "InvalidUserType",
        "KeyPairMismatch",
        "MalformedCertificate",
        "MalformedPolicyDocument",
        "PasswordPolicyViolation",
        "PolicyEvaluation",
        "PolicyNotAttachable",
        "UnrecognizedPublicKeyEncoding",
        # EC2
        "InvalidInstanceID.Malformed",
        "InvalidParameterValue",
        # S3
        "ObjectAlreadyInActiveTierError",
        "ObjectNotInActiveTierError",
        "AmbiguousGrantByEmailAddress",
        "AuthorizationHeaderMalformed",
        "BadDigest",
        "CredentialsNotSupported",
        "CrossLocationLoggingProhibited",
        "EntityTooSmall",
        "EntityTooLarge",
        "ExpiredToken",
        "IllegalVersioningConfigurationException",
        "IncompleteBody",
        "IncorrectNumberOfFilesInPostRequest",
        "InlineDataTooLarge",
        "InvalidAddressingHeader",
        "InvalidArgument",
        "InvalidBucketName",
        "InvalidDigest",
        "InvalidEncryptionAlgorithmError",
        "InvalidObjectState",
        "InvalidLocationConstraint",
        "InvalidPart",
        "InvalidPartOrder",
        "InvalidPolicyDocument",
        "InvalidRange",
        "InvalidRequest",
        "InvalidSOAPRequest",
        "InvalidStorageClass",
        "InvalidTargetBucketForLogging",
        "InvalidToken",
        "InvalidURI",
        "KeyTooLongError",
        "MalformedACLError",
        "MalformedPOSTRequest",
        "MalformedXML",
        "MethodNotAllowed",
        "MissingAttachment",
        "MissingContentLength",
        "MissingRequestBodyError",
        "MissingSecurityElement",
        "MissingSecurityHeader",
        "NoLoggingStatusForKey",
        "PreconditionFailed",
        "RequestIsNotMultiPartContent",
        "RequestTorrentOfBucketError",
        "SignatureDoesNotMatch",
        "TokenRefreshRequired",
        "UnexpectedContent",
        "UnresolvableGrantByEmailAddress",
        "UserKeyMustBeSpecified",
        # CloudWatch Logs
        "InvalidParameterException",
        "InvalidSequenceTokenException",
        "DataAlreadyAcceptedException",
    }
)

# S3 reports throttling as "ServiceUnavailable"/"SlowDown".
LIMIT_EXCEEDED_CODES = frozenset(
    {
        "LimitExceeded",
        "ReportGenerationLimitExceeded",
        "MaxMessageLengthExceeded",
        "MaxPostPreDataLengthExceededError",
        "MetadataTooLarge",
        "ServiceUnavailable",
        "SlowDown",
        "TooManyBuckets",
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "LimitExceededException",
    }
)

SERVICE_UNAVAILABLE_CODES = frozenset(
    {
        "ServiceFailure",
        "NotSupportedService",
        "InvalidPayer",
        "InternalError",
        "InvalidSecurity",
        "NotImplemented",
        "NotSignedUp",
        "PermanentRedirect",
        "Redirect",
        "RequestTimeout",
        "RequestTimeTooSkewed",
        "TemporaryRedirect",
        "ServiceUnavailableException",
    }
)

_CODE_TABLE: tuple[tuple[frozenset[str], ErrorKind], ...] = (
    (FORBIDDEN_CODES, ErrorKind.FORBIDDEN),
    (CONFLICT_CODES, ErrorKind.CONFLICT),
    (NOT_FOUND_CODES, ErrorKind.NOT_FOUND),
    (BAD_REQUEST_CODES, ErrorKind.BAD_REQUEST),
    (LIMIT_EXCEEDED_CODES, ErrorKind.LIMIT_EXCEEDED),
    (SERVICE_UNAVAILABLE_CODES, ErrorKind.SERVICE_UNAVAILABLE),
)


def error_code(exc: BaseException) -> str | None:
    """Return the AWS error code of a ClientError, or None."""
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", "")) or None
    return None


def error_message(exc: BaseException) -> str:
    """Return the AWS error message of a ClientError, falling back to str(exc)."""
    if isinstance(exc, ClientError):
        message = exc.response.get("Error", {}).get("Message")
        if message:
            return str(message)
    return str(exc)


def kind_for_code(code: str) -> ErrorKind | None:
    """Look up the ErrorKind for an AWS error code."""
    for codes, kind in _CODE_TABLE:
        if code in codes:
            return kind
    return None


def classify(message: str, exc: BaseException) -> ApiError | OperationCancelledError:
    """Map a backend exception onto an ApiError.

    ApiError and OperationCancelledError are returned unchanged, so callers
    can always ``raise classify(...)``.

    Args:
        message: Context message describing the failed operation.
        exc: The exception raised by the backend call.

    Returns:
        The classified error.
    """
    if isinstance(exc, (ApiError, OperationCancelledError)):
        return exc

    code = error_code(exc)
    if code is None:
        if isinstance(exc, BotoCoreError):
            logger.warning("backend transport error: %s", exc)
        else:
            logger.warning("unclassified error: %s (%s)", exc, type(exc).__name__)
        backend_errors_counter.labels(kind=ErrorKind.INTERNAL.value).inc()
        return ApiError(ErrorKind.INTERNAL, message, cause=exc)

    kind = kind_for_code(code)
    if kind is None:
        logger.debug("unknown aws error code %s: %s", code, exc)
        backend_errors_counter.labels(kind=ErrorKind.BAD_REQUEST.value).inc()
        return ApiError(
            ErrorKind.BAD_REQUEST,
            f"{message}: {error_message(exc)}",
            cause=exc,
            details={"backend_code": code},
        )

    backend_errors_counter.labels(kind=kind.value).inc()
    return ApiError(kind, message, cause=exc, details={"backend_code": code})


def is_not_found(exc: BaseException) -> bool:
    """True for AWS not-found errors (including bare HTTP 404 from HeadBucket)."""
    code = error_code(exc)
    if code is None:
        return False
    return code in NOT_FOUND_CODES or code == "404"
