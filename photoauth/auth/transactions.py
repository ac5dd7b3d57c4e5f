"""
In-flight authorization transactions

A transaction follows one authorization request from the authorization
endpoint to the redirect back to the client:

    REQUESTED -> AWAITING_CONSENT -> APPROVED -> CODE_ISSUED -> EXCHANGED
                                  \\-> DENIED     \\-> EXCHANGED (implicit)

EXPIRED can be entered from any non-terminal state once the transaction
outlives its TTL. Transitions outside the table are rejected.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import InvalidRequest, StoreUnavailable

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    REQUESTED = "requested"
    AWAITING_CONSENT = "awaiting_consent"
    APPROVED = "approved"
    DENIED = "denied"
    CODE_ISSUED = "code_issued"
    EXCHANGED = "exchanged"
    EXPIRED = "expired"


ALLOWED_TRANSITIONS = {
    TransactionState.REQUESTED: {TransactionState.AWAITING_CONSENT, TransactionState.EXPIRED},
    TransactionState.AWAITING_CONSENT: {
        TransactionState.APPROVED, TransactionState.DENIED, TransactionState.EXPIRED,
    },
    TransactionState.APPROVED: {
        TransactionState.CODE_ISSUED, TransactionState.EXCHANGED, TransactionState.EXPIRED,
    },
    TransactionState.CODE_ISSUED: {TransactionState.EXCHANGED, TransactionState.EXPIRED},
    TransactionState.DENIED: set(),
    TransactionState.EXCHANGED: set(),
    TransactionState.EXPIRED: set(),
}

TERMINAL_STATES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


@dataclass
class AuthorizationTransaction:
    """One authorization request and its progress through consent"""
    transaction_id: str
    client_id: str
    redirect_uri: str
    response_type: str
    requested_scope: FrozenSet[str]
    state: str
    created_at: datetime
    expires_at: datetime
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    owner_id: Optional[str] = None
    approved_scope: FrozenSet[str] = field(default_factory=frozenset)
    state_tag: TransactionState = TransactionState.REQUESTED

    @property
    def is_terminal(self) -> bool:
        return self.state_tag in TERMINAL_STATES

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryTransactionStore:
    """Thread-safe store of authorization transactions keyed by id"""

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout
        self._lock = threading.Lock()
        self._transactions: Dict[str, AuthorizationTransaction] = {}

    def save(self, transaction: AuthorizationTransaction) -> None:
        self._transactions[transaction.transaction_id] = transaction

    def get(self, transaction_id: str) -> Optional[AuthorizationTransaction]:
        return self._transactions.get(transaction_id) if transaction_id else None

    def transition(self,
                   transaction: AuthorizationTransaction,
                   target: TransactionState) -> AuthorizationTransaction:
        """
        Move a transaction to a new state

        Raises:
            InvalidRequest: If the transition is not allowed from the current state
        """
        if not self._lock.acquire(timeout=self.timeout):
            raise StoreUnavailable("Transaction store did not respond in time")
        try:
            current = transaction.state_tag
            if target not in ALLOWED_TRANSITIONS[current]:
                raise InvalidRequest(
                    f"Authorization request cannot move from {current.value} to {target.value}"
                )
            transaction.state_tag = target
        finally:
            self._lock.release()

        logger.debug(f"Transaction {transaction.transaction_id[:8]} {current.value} -> {target.value}")
        return transaction

    def discard_expired(self, now: datetime) -> int:
        """Drop terminal or timed-out transactions"""
        if not self._lock.acquire(timeout=self.timeout):
            raise StoreUnavailable("Transaction store did not respond in time")
        try:
            stale = [
                tid for tid, tx in self._transactions.items()
                if tx.is_terminal or tx.is_expired(now)
            ]
            for tid in stale:
                del self._transactions[tid]
        finally:
            self._lock.release()
        return len(stale)
