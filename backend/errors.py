class InvalidAmount(ValueError):
    """Amount is non-numeric, negative, non-finite or out of range."""


class InvalidAccount(ValueError):
    """Account identifier is not a valid base58 pubkey."""


class UpstreamUnavailable(RuntimeError):
    """Data service or RPC call failed, or returned something unusable."""
