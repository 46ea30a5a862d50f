"""
core/errors.py -- Error taxonomy shared by auth/ and api/.

Every error carries a fixed, client-safe (code, message, status) triple. The
message never names the file, the validation rule, or the branch that failed:
internal detail goes to the server log only. api/main.py turns any AuthError
into the standard ErrorResponse envelope.

Anti-enumeration rules:
  InvalidDomain and SecretNotFound are different classes (so logs can tell
  them apart) but share the same public code and message. A caller cannot
  learn whether a hostname failed the charset check or simply has no secret.

  TokenInvalid covers malformed, expired, wrong-signature and wrong-algorithm
  tokens with one message.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""


class AuthError(Exception):
    """Base class for all HostAuth errors that map to a client response."""

    code = "auth_error"
    message = "Authentication failed."
    status_code = 400

    def __init__(self, detail: str = "") -> None:
        # detail is for logs only -- never rendered to the client.
        super().__init__(detail or self.message)
        self.detail = detail


class InvalidDomain(AuthError):
    code = "invalid_domain"
    message = "Invalid redirect or domain."
    status_code = 400


class SecretNotFound(AuthError):
    code = InvalidDomain.code
    message = InvalidDomain.message
    status_code = 400


class NoSecretConfigured(SecretNotFound):
    """Raised when a token is minted for a domain with no resolvable secret."""


class TokenInvalid(AuthError):
    code = "unauthorized"
    message = "Invalid or expired token."
    status_code = 401


class StateExpiredOrUnknown(AuthError):
    code = "invalid_state"
    message = "Invalid or expired sign-in state."
    status_code = 400


class UserNotFound(AuthError):
    code = "unauthorized"
    message = "Invalid or expired token."
    status_code = 401


class CredentialMismatch(AuthError):
    code = "bad_credentials"
    message = "Invalid email or password."
    status_code = 401


class EmailAlreadyRegistered(AuthError):
    code = "email_taken"
    message = "Email already registered."
    status_code = 400


class IdentityProviderError(AuthError):
    code = "auth_failed"
    message = "Sign-in with the identity provider failed."
    status_code = 502
