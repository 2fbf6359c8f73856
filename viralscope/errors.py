class ViralscopeError(Exception):
    """Base class for errors raised by the analysis pipeline."""

    status_code = 500
    public_message = "Server error"


class InvalidInput(ViralscopeError):
    status_code = 400
    public_message = "Text content or video URL is required"


class AuthRequired(ViralscopeError):
    """No usable session; the caller should be sent to sign in."""

    status_code = 401
    public_message = "Authentication required"


class UpstreamAuthError(ViralscopeError):
    """The service could not obtain a provider access token."""


class UpstreamCallError(ViralscopeError):
    """An AI provider call failed or returned unusable data."""


class PersistenceError(ViralscopeError):
    """Writing an analysis record failed. Logged, never surfaced."""


class NotFound(ViralscopeError):
    status_code = 404
    public_message = "Analysis not found."


class MissingCredentials(UpstreamAuthError):
    """The service account key is absent or unreadable."""

    public_message = "Server configuration error"
