"""
Billing error taxonomy.

Each error carries the HTTP status and the machine-readable code the routers
put into the response envelope.
"""


class BillingError(Exception):
    """Base exception for billing errors."""

    status_code = 400
    error_code = "billing_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class AuthenticityError(BillingError):
    """Webhook signature is missing, invalid or outside the allowed skew."""

    error_code = "invalid_signature"


class UnknownTierError(BillingError):
    """Tier has no configured Stripe price."""

    error_code = "unknown_tier"


class UnknownPriceError(BillingError):
    """Stripe price id does not map to exactly one tier."""

    error_code = "unknown_price"


class NoChargeFoundError(BillingError):
    """No charge could be resolved for the refund."""

    error_code = "no_charge_found"


class NoSubscriptionFoundError(BillingError):
    """User has no Stripe subscription."""

    error_code = "no_subscription_found"


class UserNotResolvedError(BillingError):
    """No local user matches the Stripe customer."""

    status_code = 404
    error_code = "user_not_resolved"


class AuthenticationRequiredError(BillingError):
    """A user identifier is required."""

    status_code = 401
    error_code = "auth_required"


class TrialAlreadyUsedError(BillingError):
    """Free trial already used."""

    status_code = 409
    error_code = "trial_already_used"


class BillingNotConfiguredError(BillingError):
    """Billing is not configured on this server."""

    status_code = 503
    error_code = "billing_not_configured"
