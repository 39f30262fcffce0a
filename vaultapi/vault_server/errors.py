"""
Error codes and exception types for the Vault server.

Every failure that reaches a client is a VaultError carrying a numeric code.
The code family selects the HTTP status:
- 1xxx: informational (request succeeded, client action may be needed)
- 2xxx: partial success (side effect failed, primary result kept)
- 3xxx: request-shape errors (missing or malformed parameters)
- 4xxx: domain errors (not found, denied, invalid state)
- 5xxx: system errors (database, crypto, queue, misconfiguration)

Invariants:
    - Codes are never renumbered once published
    - Messages never include secrets (hashes, keys, cookie values)
    - Every code raised by the server has an entry in MESSAGES

How to change safely:
    - Add new codes inside the family that matches their HTTP status
    - Keep status_for() in sync with the families documented above
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Response codes used by the API."""

    OK = 1000
    LOGIN_TO_CONTINUE = 1001
    LOGGED_OUT = 1002
    LOGGED_IN = 1003

    INVITATION_NOT_SENT = 2490

    NOT_LOGGED_IN = 3000
    INVALID_CREDENTIALS = 3001
    INVALID_PARAMETER = 3100
    INVALID_JSON_FIELD = 3200
    INVALID_REQUEST = 3300

    USER_NOT_FOUND = 4000
    USER_INACTIVE = 4001
    USER_READONLY = 4002
    ACCESS_DENIED = 4003
    NOT_ON_SELF = 4004
    ALIAS_EXISTS = 4010
    EMAIL_EXISTS = 4011
    ALREADY_REGISTERED = 4012
    NOT_REGISTERED = 4051
    LAST_USER = 4060
    LAST_MANAGER = 4061
    ORG_NOT_FOUND = 4100
    SYSTEM_USER = 4101
    STORE_NOT_FOUND = 4200
    STORE_NOT_OPEN = 4202
    STORE_BLOCKED = 4203
    STORE_READONLY = 4204
    SESSION_REQUIRED = 4301
    INVALID_INVITATION = 4390
    INVITATION_EXPIRED = 4391
    ENTRY_NOT_FOUND = 4400
    NOT_A_FOLDER = 4401
    FOLDER_NOT_EMPTY = 4402
    ROOT_ENTRY = 4403

    SESSION_ERROR = 5000
    STORE_OPEN_FAILED = 5010
    DATABASE = 5100
    REQUEST_ERROR = 5200
    INVALID_BODY = 5201
    INVALID_BODY_FIELD = 5202
    MISCONFIGURED = 5303
    CRYPTO = 5900
    QUEUE = 5920
    QUEUE_CONNECTION = 5921
    NOT_IMPLEMENTED_YET = 5998
    NOT_IMPLEMENTED = 5999


MESSAGES: dict[int, str] = {
    ErrorCode.OK: "OK",
    ErrorCode.LOGIN_TO_CONTINUE: "Please login to continue",
    ErrorCode.LOGGED_OUT: "Logged out",
    ErrorCode.LOGGED_IN: "Already logged in",
    ErrorCode.INVITATION_NOT_SENT: "Failed to send invitation. Retry!",
    ErrorCode.NOT_LOGGED_IN: "Not logged in",
    ErrorCode.INVALID_CREDENTIALS: "Invalid credentials",
    ErrorCode.INVALID_PARAMETER: "Invalid request parameter",
    ErrorCode.INVALID_JSON_FIELD: "Invalid or missing JSON field",
    ErrorCode.INVALID_REQUEST: "Invalid request",
    ErrorCode.USER_NOT_FOUND: "User does not exist",
    ErrorCode.USER_INACTIVE: "User is inactive",
    ErrorCode.USER_READONLY: "User is read-only",
    ErrorCode.ACCESS_DENIED: "Insufficient roles for operation",
    ErrorCode.NOT_ON_SELF: "Operation not allowed on self",
    ErrorCode.ALIAS_EXISTS: "Alias already in use",
    ErrorCode.EMAIL_EXISTS: "Email already in use",
    ErrorCode.ALREADY_REGISTERED: "User already registered",
    ErrorCode.NOT_REGISTERED: "User not registered",
    ErrorCode.LAST_USER: "Can not remove last user",
    ErrorCode.LAST_MANAGER: "Operation would remove last manager",
    ErrorCode.ORG_NOT_FOUND: "Organization does not exist",
    ErrorCode.SYSTEM_USER: "Operation not allowed on system user",
    ErrorCode.STORE_NOT_FOUND: "Store does not exist",
    ErrorCode.STORE_NOT_OPEN: "Store is not open",
    ErrorCode.STORE_BLOCKED: "Store is blocked",
    ErrorCode.STORE_READONLY: "Store is read-only",
    ErrorCode.SESSION_REQUIRED: "User session required",
    ErrorCode.INVALID_INVITATION: "Invalid invitation",
    ErrorCode.INVITATION_EXPIRED: "Invitation expired",
    ErrorCode.ENTRY_NOT_FOUND: "Entry does not exist",
    ErrorCode.NOT_A_FOLDER: "Parent entry is not a folder",
    ErrorCode.FOLDER_NOT_EMPTY: "Folder is not empty",
    ErrorCode.ROOT_ENTRY: "Root entry is not accessible",
    ErrorCode.SESSION_ERROR: "Failed to create session",
    ErrorCode.STORE_OPEN_FAILED: "Failed to open store",
    ErrorCode.DATABASE: "Database error",
    ErrorCode.REQUEST_ERROR: "Request error",
    ErrorCode.INVALID_BODY: "Invalid request body",
    ErrorCode.INVALID_BODY_FIELD: "Invalid request body field",
    ErrorCode.MISCONFIGURED: "System misconfiguration",
    ErrorCode.CRYPTO: "Cryptographic operation failed",
    ErrorCode.QUEUE: "Failed to publish message",
    ErrorCode.QUEUE_CONNECTION: "Failed to connect to queue",
    ErrorCode.NOT_IMPLEMENTED_YET: "Not yet implemented",
    ErrorCode.NOT_IMPLEMENTED: "Not implemented",
}


def message_for(code: int) -> str:
    """Get the client-facing message for a code."""
    return MESSAGES.get(code, f"Error {code}")


def status_for(code: int) -> int:
    """Map a response code to its HTTP status.

    Args:
        code: Response code

    Returns:
        HTTP status code
    """
    if code in (ErrorCode.NOT_LOGGED_IN, ErrorCode.SESSION_REQUIRED):
        return 401
    if code == ErrorCode.ACCESS_DENIED:
        return 403
    if code in (ErrorCode.NOT_IMPLEMENTED_YET, ErrorCode.NOT_IMPLEMENTED):
        return 501
    if ErrorCode.REQUEST_ERROR <= code <= ErrorCode.INVALID_BODY_FIELD:
        return 400

    family = code // 1000
    if family in (1, 2):
        return 200
    if family in (3, 4):
        return 400
    return 500


class VaultError(Exception):
    """Base exception for all Vault server errors.

    Attributes:
        code: Numeric response code
        message: Client-facing message
        details: Additional error context (field errors, ids)
    """

    default_code: int = ErrorCode.MISCONFIGURED

    def __init__(
        self,
        code: int | None = None,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = int(code if code is not None else self.default_code)
        self.message = message or message_for(self.code)
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status(self) -> int:
        """HTTP status for this error."""
        return status_for(self.code)

    def to_dict(self) -> dict[str, Any]:
        """Convert to response envelope."""
        return {"code": self.code, "message": self.message, "data": self.details or None}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code}, {self.message!r})"


class InvalidCredentialsError(VaultError):
    """Password hash did not unlock the requested secret."""

    default_code = ErrorCode.INVALID_CREDENTIALS


class StoreNotOpen(VaultError):
    """Store session is absent or expired."""

    default_code = ErrorCode.STORE_NOT_OPEN


class CryptoError(VaultError):
    """Encryption or decryption failed for a reason other than credentials."""

    default_code = ErrorCode.CRYPTO


class QueueError(VaultError):
    """Publishing to the outbound queue failed."""

    default_code = ErrorCode.QUEUE


class NotYetImplemented(VaultError):
    """Endpoint exists but has no defined semantics yet."""

    default_code = ErrorCode.NOT_IMPLEMENTED


class UnknownObjectTypeError(VaultError):
    """A global id carries a type tag outside the closed set."""

    default_code = ErrorCode.MISCONFIGURED


class InitError(VaultError):
    """Server component could not be built from configuration."""

    default_code = ErrorCode.MISCONFIGURED


class ConfigError(Exception):
    """Configuration file could not be loaded.

    Attributes:
        exit_code: Process exit code (1 = cannot open, 2 = cannot parse)
    """

    CANNOT_OPEN = 1
    CANNOT_PARSE = 2

    def __init__(self, message: str, exit_code: int = CANNOT_PARSE) -> None:
        super().__init__(message)
        self.exit_code = exit_code
