"""
Exception hierarchy shared by providers, the granter and the access service.
Callers outside the package should only ever see subclasses of GrantkeeperError.
"""
from typing import Optional


class GrantkeeperError(Exception):
    """Base exception for all grantkeeper errors."""
    pass


class NotFoundError(GrantkeeperError):
    """A principal, permission set, execution or target resource is absent."""
    pass


class ConflictError(GrantkeeperError):
    """The control plane rejected a write because of concurrent or stale state."""
    pass


class ValidationError(GrantkeeperError, ValueError):
    """Malformed arguments, missing fields or a duration exceeding policy."""
    pass


class AuthorizationError(GrantkeeperError):
    """The caller is not allowed to view, cancel, review or revoke."""
    pass


class ProviderError(GrantkeeperError):
    """A provider call failed with a reason reported by the external system."""
    pass


class CancelledError(GrantkeeperError):
    """The caller's context was cancelled or its deadline passed."""
    pass


class RetryTimeoutError(GrantkeeperError):
    """
    Raised when a bounded retry loop exhausts its time budget.
    The last error seen is kept on `last_error` and chained as __cause__.
    """
    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


# --- Domain specific errors ---

class UserNotFoundError(NotFoundError):
    def __init__(self, email: str):
        super().__init__(f"user {email} was not found in the directory")
        self.email = email


class AmbiguousUserError(GrantkeeperError):
    def __init__(self, email: str, count: int):
        super().__init__(f"expected 1 user for {email} but found {count}")
        self.email = email
        self.count = count


class ProviderNotFoundError(NotFoundError):
    def __init__(self, provider: str):
        super().__init__(f"provider {provider} not found")
        self.provider = provider


class GrantNotFoundError(NotFoundError):
    def __init__(self, grant_id: str):
        super().__init__(f"grant {grant_id} not found")
        self.grant_id = grant_id


class RuleNotFoundError(NotFoundError):
    def __init__(self, rule_id: str):
        super().__init__(f"access rule {rule_id} not found")
        self.rule_id = rule_id


class RequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str):
        super().__init__(f"request {request_id} not found")
        self.request_id = request_id


class NoMatchingGroupError(AuthorizationError):
    def __init__(self):
        super().__init__("user was not in a matching group for the access rule")


class RequestCannotBeCancelledError(GrantkeeperError):
    def __init__(self, status: str):
        super().__init__(f"only pending requests can be cancelled (status: {status})")
        self.status = status
