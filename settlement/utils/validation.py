"""
Input validation helpers.

Amount normalization and payout address / transaction hash checks.
"""

import re
from decimal import Decimal, InvalidOperation

from loguru import logger
from web3 import Web3

from settlement.utils.exceptions import InvalidAmount


# Base58 alphabet without 0, O, I and l; TRON addresses start with "T"
TRC20_ADDRESS_PATTERN = re.compile(r"^T[1-9A-HJ-NP-Za-km-z]{33}$")
EVM_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
TX_HASH_PATTERN = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def to_amount(value: Decimal | int | str, scale: int = 8) -> Decimal:
    """
    Convert an incoming amount to a ledger Decimal.

    Args:
        value: Decimal, int or numeric string (floats are refused)
        scale: Maximum number of fractional digits

    Returns:
        Positive Decimal quantized to ``scale`` digits

    Raises:
        InvalidAmount: If the value is not a finite positive number or
            carries more fractional digits than the ledger keeps
    """
    if isinstance(value, float):
        raise InvalidAmount("Float amounts are not accepted", value=str(value))

    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(f"Invalid amount: {value}", value=str(value)) from e

    if not amount.is_finite():
        raise InvalidAmount("Amount must be finite", value=str(value))
    if amount <= 0:
        raise InvalidAmount("Amount must be positive", value=str(value))

    quantum = Decimal(1).scaleb(-scale)
    quantized = amount.quantize(quantum)
    if quantized != amount:
        raise InvalidAmount(
            f"Amount has more than {scale} fractional digits",
            value=str(value),
        )
    return quantized


def validate_trc20_address(address: str) -> bool:
    """
    Validate TRON (TRC20) address format.

    Args:
        address: Base58 address

    Returns:
        True if valid
    """
    return bool(address) and bool(TRC20_ADDRESS_PATTERN.match(address))


def validate_evm_address(address: str, checksum: bool = True) -> bool:
    """
    Validate ERC20/BEP20 wallet address.

    Args:
        address: Wallet address
        checksum: Whether to validate checksum

    Returns:
        True if valid
    """
    if not address or not EVM_ADDRESS_PATTERN.match(address):
        return False

    if checksum:
        try:
            return Web3.is_checksum_address(address)
        except (ValueError, TypeError) as e:
            logger.debug(f"Checksum validation failed for {address}: {e}")
            return False

    return True


def validate_payout_address(address: str, network: str) -> bool:
    """
    Validate a payout address for the given network.

    Args:
        address: Destination address
        network: TRC20, ERC20 or BEP20

    Returns:
        True if valid
    """
    network = network.upper()
    if network == "TRC20":
        return validate_trc20_address(address)
    if network in ("ERC20", "BEP20"):
        return validate_evm_address(address)
    return False


def validate_transaction_hash(tx_hash: str) -> bool:
    """
    Validate transaction hash format.

    Args:
        tx_hash: 64 hex chars, optionally 0x-prefixed

    Returns:
        True if valid
    """
    return bool(tx_hash) and bool(TX_HASH_PATTERN.match(tx_hash))
