"""Domain errors raised by the sync and release services.

The HTTP layer maps these to status codes; the services never do.
"""


class RepositoryNotFoundError(LookupError):
    """Raised when a repository does not exist or belongs to another user."""


class UserNotFoundError(LookupError):
    """Raised when a user id does not resolve."""


class VersionNotFoundError(ValueError):
    """Raised when a requested version tag is not among the stored releases."""
