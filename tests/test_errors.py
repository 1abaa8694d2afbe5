import pytest

from errors import CLASSIFICATION_RULES, Outcome, classify


@pytest.mark.parametrize("message, expected", [
    ("execution reverted: Not whitelisted", Outcome.RETRYABLE_REJECTION),
    ("execution reverted: Sale not open", Outcome.RETRYABLE_REJECTION),
    ("execution reverted", Outcome.RETRYABLE_REJECTION),
    ("insufficient funds for gas * price + value", Outcome.INSUFFICIENT_FUNDS),
    ("nonce too low", Outcome.NONCE_CONFLICT),
    ("Nonce has already been used", Outcome.NONCE_CONFLICT),
    ("already known", Outcome.NONCE_CONFLICT),
    ("replacement transaction underpriced", Outcome.NONCE_CONFLICT),
    ("max priority fee per gas higher than max fee per gas", Outcome.GAS_PARAMETER_ERROR),
    ("maxPriorityFeePerGas cannot exceed maxFeePerGas", Outcome.GAS_PARAMETER_ERROR),
    ("max fee per gas less than block base fee", Outcome.GAS_PARAMETER_ERROR),
])
def test_known_messages(message, expected):
    assert classify(message) is expected


def test_first_matching_rule_wins():
    assert classify("insufficient funds: nonce 4") is Outcome.INSUFFICIENT_FUNDS
    assert classify("nonce too low, execution reverted") is Outcome.NONCE_CONFLICT
    assert classify("max priority fee per gas higher than max fee per gas, revert") is Outcome.GAS_PARAMETER_ERROR


@pytest.mark.parametrize("message", ["", None, "connection reset by peer", 42, "502 Bad Gateway"])
def test_unmatched_input_is_fatal_unknown(message):
    assert classify(message) is Outcome.FATAL_UNKNOWN


def test_custom_rules():
    rules = [("busy", Outcome.RETRYABLE_REJECTION)] + CLASSIFICATION_RULES
    assert classify("server busy", rules) is Outcome.RETRYABLE_REJECTION
    assert classify("server busy") is Outcome.FATAL_UNKNOWN
