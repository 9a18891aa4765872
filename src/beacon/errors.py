"""Error taxonomy for component registration and the monitoring endpoint."""


class BeaconError(Exception):
    """Base class for all beacon errors."""


class ValidationError(BeaconError, ValueError):
    """Registration input was rejected before any state was committed."""


class AuthenticationError(BeaconError):
    """Missing or mismatched credentials (HTTP 401)."""


class MalformedRequestError(BeaconError):
    """Authorization header could not be parsed (HTTP 400)."""


class TransportSetupError(BeaconError, RuntimeError):
    """Bus subscription or HTTP bind failed at startup."""
