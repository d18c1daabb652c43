"""Authentication error taxonomy.

Every error here is recoverable at the request boundary and maps to a
rejected login or an unauthenticated request. Storage failures are not
wrapped; they propagate as ordinary SQLAlchemy exceptions.
"""

from __future__ import annotations


class AuthError(RuntimeError):
    # Safe to show to clients. Subclasses that must not leak which branch
    # failed share a single public message.
    public_message = "Not authenticated"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class StateNotFound(AuthError):
    """Unknown, already consumed, or expired login state."""

    public_message = "Invalid or expired login state"


class InvalidReturnUrl(AuthError):
    public_message = "Return URL is not allowed"


class IdentityVerificationFailed(AuthError):
    """Provider rejected the exchange, the nonce did not match, or the call timed out."""

    public_message = "Identity verification failed"


class SessionRejected(AuthError):
    public_message = "Invalid session"


class SessionNotFound(SessionRejected):
    pass


class SessionExpired(SessionRejected):
    pass


class ConflictingIdentityCreation(AuthError):
    """A concurrent first login created the same user; callers retry as a lookup."""

    public_message = "User already exists"
