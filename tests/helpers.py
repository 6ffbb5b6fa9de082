"""Test data helpers shared by the test modules."""

# Valid TRC20 payout addresses (T + 33 base58 characters)
PAYOUT_ADDRESS = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
OTHER_PAYOUT_ADDRESS = "TXYZopqrstuvwxyz1234567892ABCDEFGH"


def tx_hash(n: int) -> str:
    """Deterministic 64-hex transaction hash."""
    return f"{n:064x}"
