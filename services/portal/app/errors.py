from typing import Optional


class PortalError(Exception):
    """Base class for errors raised by the portal core."""


class GrantConfigurationError(PortalError):
    """A grant definition cannot be served (missing grant code, bad rules, ...)."""


class RedirectRuleError(GrantConfigurationError):
    """Redirect rule table failed validation while loading a grant."""


class NoRedirectRuleError(GrantConfigurationError):
    """No rule matched. Only reachable when rule validation was bypassed."""

    def __init__(self, from_status: str, gas_status: str):
        super().__init__(f"no redirect rule found for fromStatus={from_status} gasStatus={gas_status}")
        self.from_status = from_status
        self.gas_status = gas_status


class GrantNotFoundError(PortalError):
    def __init__(self, slug: str):
        super().__init__(f"Form '{slug}' not found")
        self.slug = slug


class GasApiError(PortalError):
    """
    Failure talking to the Grant Administration Service.
    status_code is None for network errors, timeouts and unreadable responses.
    """

    NOT_FOUND = 404

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == self.NOT_FOUND


class SubmissionError(PortalError):
    """The application could not be handed to GAS (nothing was recorded locally)."""

    def __init__(self, message: str, reference_number: Optional[str] = None):
        super().__init__(message)
        self.reference_number = reference_number
