"""
Error taxonomy for claim resolution and settlement.

InvalidInput        malformed vote/claim fields, caller's fault
InvalidState        operation illegal for the claim's lifecycle status
AlreadyFinalized    finalize on a claim that is already resolved
AlreadyFinalizing   finalize while another finalize holds the claim
ProviderFailure     one AI model attempt failed (recovered by fallback)
ConfigurationError  no usable AI provider / credential
"""


class TruthstakeError(Exception):
    """Base class for all engine errors."""
    pass


class InvalidInput(TruthstakeError):
    """Raised when vote or claim fields are malformed."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class InvalidStake(InvalidInput):
    """Raised when a stake is missing, non-finite or below the minimum."""

    def __init__(self, message: str):
        super().__init__(message, field="stake")


class DuplicateVote(InvalidInput):
    """Raised when a wallet already voted on a claim."""

    def __init__(self, claim_id: str, voter_address: str):
        super().__init__(
            f"Voter {voter_address} already voted on claim {claim_id}",
            field="voter_address",
        )
        self.claim_id = claim_id
        self.voter_address = voter_address


class InvalidState(TruthstakeError):
    """Raised when an operation is illegal for the claim's current status."""

    def __init__(self, message: str, status: str = None):
        super().__init__(message)
        self.status = status


class ClaimNotFound(InvalidState):
    def __init__(self, claim_id: str):
        super().__init__(f"Claim {claim_id} not found")
        self.claim_id = claim_id


class AlreadyFinalized(InvalidState):
    """Raised when finalize is repeated on a resolved claim."""

    def __init__(self, claim_id: str):
        super().__init__(f"Claim {claim_id} is already finalized", status="resolved")
        self.claim_id = claim_id


class AlreadyFinalizing(InvalidState):
    """Raised when another finalize currently holds the claim."""

    def __init__(self, claim_id: str):
        super().__init__(f"Claim {claim_id} is being finalized", status="resolving")
        self.claim_id = claim_id


class ProviderFailure(TruthstakeError):
    """Raised by an AI provider when a single model attempt fails."""

    def __init__(self, message: str, model: str = None):
        super().__init__(message)
        self.model = model


class ConfigurationError(TruthstakeError):
    """Raised when no AI provider credential is configured."""
    pass
