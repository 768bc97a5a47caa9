"""
Deposit Reconciliation Errors

Typed error taxonomy for the reconciliation pipeline.

Validation and concurrency-guard conditions are resolved locally by the
callers; network and ledger conditions surface as typed outcomes. Only truly
exceptional situations (malformed collaborator responses, illegal state
transitions) propagate.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for every reconciliation pipeline error"""


class InvalidIdentifier(ReconciliationError):
    """User input is not a syntactically valid transaction hash"""

    def __init__(self, raw_input: object):
        self.raw_input = raw_input
        preview = str(raw_input)[:80]
        super().__init__(f"Invalid transaction hash: {preview!r}")


class NetworkProbeFailure(ReconciliationError):
    """A single network lookup failed (timeout, service error)"""

    def __init__(self, network: str, reason: str):
        self.network = network
        self.reason = reason
        super().__init__(f"{network} probe failed: {reason}")


class MalformedLookupResponse(ReconciliationError):
    """Lookup service answered with a payload we cannot interpret"""

    def __init__(self, network: str, detail: str):
        self.network = network
        self.detail = detail
        super().__init__(f"Malformed lookup response from {network}: {detail}")


class AlreadyInProgress(ReconciliationError):
    """A reconciliation for this identifier is already searching"""

    def __init__(self, tx_id: str):
        self.tx_id = tx_id
        super().__init__(f"Reconciliation already in progress for {tx_id}")


class AmbiguousMatch(ReconciliationError):
    """More than one network reported the same transaction"""

    def __init__(self, tx_id: str, networks: list, chosen: str):
        self.tx_id = tx_id
        self.networks = networks
        self.chosen = chosen
        super().__init__(
            f"Transaction {tx_id} found on {', '.join(networks)}; using {chosen}"
        )


class MissingDepositAddress(ReconciliationError):
    """No platform deposit address configured for a network"""

    def __init__(self, network: str):
        self.network = network
        super().__init__(f"No deposit address configured for {network}")


class IllegalIntentTransition(ReconciliationError):
    """Deposit intent state machine was asked to make an illegal move"""

    def __init__(self, tx_id: str, from_state: str, to_state: str):
        self.tx_id = tx_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Intent {tx_id}: cannot move from {from_state} to {to_state}")


class DuplicateDeposit(ReconciliationError):
    """Transaction hash already credited with different details"""

    def __init__(self, tx_id: str, existing_deposit_id: Optional[int] = None):
        self.tx_id = tx_id
        self.existing_deposit_id = existing_deposit_id
        super().__init__(f"Transaction {tx_id} already processed (deposit {existing_deposit_id})")


class RecipientMismatchError(ReconciliationError):
    """Deposit creation requested for a verdict that is not ours"""

    def __init__(self, tx_id: str, recipient: Optional[str], expected: Optional[str]):
        self.tx_id = tx_id
        self.recipient = recipient
        self.expected = expected
        super().__init__(
            f"Transaction {tx_id} recipient {recipient} does not match deposit address {expected}"
        )


class UnsupportedToken(ReconciliationError):
    """Transfer was made in a token the platform does not credit"""

    def __init__(self, tx_id: str, token_symbol: Optional[str], accepted):
        self.tx_id = tx_id
        self.token_symbol = token_symbol
        self.accepted = tuple(accepted)
        super().__init__(
            f"Transaction {tx_id} sent {token_symbol or 'an unknown token'}, "
            f"accepted tokens: {', '.join(self.accepted)}"
        )


class BelowMinimumDeposit(ReconciliationError):
    """Deposit amount is below the configured minimum"""

    def __init__(self, amount, minimum):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Deposit amount {amount} is below minimum {minimum}")


class DepositNotFound(ReconciliationError):
    """Ledger has no deposit with the requested id"""

    def __init__(self, deposit_id: int):
        self.deposit_id = deposit_id
        super().__init__(f"Deposit {deposit_id} not found")


class IllegalDepositState(ReconciliationError):
    """Ledger operation not allowed for the deposit's current status"""

    def __init__(self, deposit_id: int, status: str, operation: str):
        self.deposit_id = deposit_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} deposit {deposit_id} with status {status}")


class TierSelectionError(ReconciliationError):
    """VIP tier choice rejected at the call site (downgrade or unaffordable)"""
