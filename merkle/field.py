"""
BN254 scalar field elements.

Every leaf, hash output and root is a FieldElement. Construction validates the
range and never reduces modulo P: a value >= P reaching this layer is an
encoding bug upstream and must surface as FieldRangeError.
"""

from typing import Union

from .exceptions import FieldRangeError

# BN254 scalar field prime
FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# Width of the canonical big-endian encoding
FIELD_BYTES = 32


class FieldElement(int):
    """Integer constrained to [0, FIELD_SIZE)"""

    def __new__(cls, value: int):
        if isinstance(value, FieldElement):
            return value
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(
                f"FieldElement expects an int, got {type(value).__name__}")
        if value < 0 or value >= FIELD_SIZE:
            raise FieldRangeError(value, FIELD_SIZE)
        return super().__new__(cls, value)

    @classmethod
    def parse(cls, value: Union[int, str, bytes]) -> "FieldElement":
        """Parse an int, decimal string, 0x-hex string or big-endian bytes"""
        if isinstance(value, FieldElement):
            return value
        if isinstance(value, (bytes, bytearray)):
            if len(value) > FIELD_BYTES:
                raise FieldRangeError(int.from_bytes(value, 'big'), FIELD_SIZE)
            return cls(int.from_bytes(value, 'big'))
        if isinstance(value, str):
            text = value.strip()
            if text.lower().startswith('0x'):
                return cls(int(text, 16))
            return cls(int(text, 10))
        return cls(value)

    def to_bytes32(self) -> bytes:
        return int(self).to_bytes(FIELD_BYTES, 'big')

    def to_hex(self) -> str:
        """Canonical fixed-width encoding: 0x + 64 lowercase hex digits"""
        return '0x' + self.to_bytes32().hex()

    def __str__(self) -> str:
        return int.__repr__(self)

    def __repr__(self) -> str:
        return f"FieldElement({int.__repr__(self)})"


def to_field(value: Union[int, str, bytes]) -> FieldElement:
    """Boundary conversion used by every public entry point"""
    return FieldElement.parse(value)


def canonical_key(value: Union[int, str, bytes]) -> str:
    """Fixed-width hex key used for nullifier and root lookups"""
    return FieldElement.parse(value).to_hex()
