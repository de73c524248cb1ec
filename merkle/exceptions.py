"""Error taxonomy for the accumulator layer."""


class AccumulatorError(Exception):
    """Base exception for accumulator operations"""
    retryable = False


class FieldRangeError(AccumulatorError, ValueError):
    """Value is negative or not strictly below the field modulus"""

    def __init__(self, value, modulus=None):
        self.value = value
        if modulus is None:
            message = f"Value {value} outside field bounds"
        else:
            message = f"Value {value} outside field bounds [0, {modulus})"
        super().__init__(message)


class AccumulatorFull(AccumulatorError):
    """Insertion attempted beyond 2^levels leaves"""
    pass


class LeafNotFound(AccumulatorError, LookupError):
    """Requested leaf index or commitment was never inserted"""
    pass


class DuplicateCommitment(AccumulatorError):
    """Commitment already registered"""

    def __init__(self, commitment, index: int):
        self.commitment = commitment
        self.index = index
        super().__init__(
            f"Commitment {commitment} already registered at index {index}")


class UnknownRoot(AccumulatorError):
    """Root aged out of (or never entered) the root history window"""
    retryable = True


class NullifierAlreadyUsed(AccumulatorError):
    """Nullifier hash has already been consumed"""

    def __init__(self, nullifier_hash: str):
        self.nullifier_hash = nullifier_hash
        super().__init__(f"Nullifier {nullifier_hash} has already been used")


class RootInjectionDisabled(AccumulatorError):
    """Test-only root injection requested while it is disabled"""
    pass
