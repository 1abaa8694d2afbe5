from enum import StrEnum
from typing import List, Tuple


class ConfigurationError(Exception):
    """Invalid or missing configuration. Fatal before the run starts."""


class TransactionReverted(Exception):
    """Transaction was mined but its receipt carries status 0."""


class InvalidFeeParams(ValueError):
    """Fee pair would be rejected by the network (maxFee < maxPriorityFee)."""

    def __init__(self, max_fee: int, max_priority_fee: int):
        super().__init__(
            f"max priority fee per gas higher than max fee per gas "
            f"(maxPriorityFeePerGas={max_priority_fee}, maxFeePerGas={max_fee})"
        )
        self.max_fee = max_fee
        self.max_priority_fee = max_priority_fee


class Outcome(StrEnum):
    RETRYABLE_REJECTION = "RetryableRejection"
    GAS_PARAMETER_ERROR = "GasParameterError"
    NONCE_CONFLICT = "NonceConflict"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    FATAL_UNKNOWN = "FatalUnknown"


# Ordered (pattern, outcome) pairs, first match wins. Patterns are lowercase.
CLASSIFICATION_RULES: List[Tuple[str, Outcome]] = [
    ("max priority fee per gas higher than max fee per gas", Outcome.GAS_PARAMETER_ERROR),
    ("maxpriorityfeepergas cannot exceed maxfeepergas", Outcome.GAS_PARAMETER_ERROR),
    ("max fee per gas less than block base fee", Outcome.GAS_PARAMETER_ERROR),
    ("insufficient funds", Outcome.INSUFFICIENT_FUNDS),
    ("nonce", Outcome.NONCE_CONFLICT),
    ("already known", Outcome.NONCE_CONFLICT),
    ("replacement transaction underpriced", Outcome.NONCE_CONFLICT),
    ("not whitelisted", Outcome.RETRYABLE_REJECTION),
    ("not open", Outcome.RETRYABLE_REJECTION),
    ("revert", Outcome.RETRYABLE_REJECTION),
]


def classify(error_message, rules: List[Tuple[str, Outcome]] = CLASSIFICATION_RULES) -> Outcome:
    """Map a broadcaster error message to an Outcome. Never raises."""
    text = str(error_message or "").lower()
    for pattern, outcome in rules:
        if pattern in text:
            return outcome
    return Outcome.FATAL_UNKNOWN
