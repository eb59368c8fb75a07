"""
Error kinds raised by the ledger, the AMM pool and the identity generator.

Every rejection leaves ledger, pool and account state exactly as it was
before the attempt.
"""


class ValidationError(Exception):
    """Raised when validation fails."""
    pass


class ExhaustionError(ValidationError):
    """The address space of the identity generator is used up."""
    pass


class InvalidAmount(ValidationError):
    """Amount is not a finite number greater than zero."""
    pass


class NonPositiveAmount(InvalidAmount):
    """Swap input (or resulting output) is not positive."""
    pass


class UnsupportedCurrency(ValidationError):
    pass


class BadPublicKey(ValidationError):
    """Embedded sender public key cannot be parsed."""
    pass


class BadSignature(ValidationError):
    """Signature is missing, malformed or does not verify."""
    pass


class InsufficientBalance(ValidationError):
    pass


class InsufficientLiquidity(ValidationError):
    """Swap would drain (or nearly drain) one side of the pool."""
    pass


class UnknownAccount(ValidationError):
    pass


class ChainLinkError(ValidationError):
    """Block does not extend the current chain tip."""
    pass


class InvalidProofOfWork(ValidationError):
    pass


class MiningCancelled(Exception):
    """Nonce search was stopped through its cancellation signal."""
    pass
