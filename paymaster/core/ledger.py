"""
Deposit Ledger

Single source of truth for how much of the paymaster deposit is spoken for.
Tracks ``balance`` (funded wei not yet spent) and ``reserved`` (wei held by
pending reservations). ``0 <= reserved <= balance`` holds after every
mutation.

All mutations happen under one ``threading.Lock`` and only touch in-memory
bookkeeping, so the critical section is short and never awaits. The lock is
safe to take from the event loop and from worker threads alike.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional

from .errors import (
    InsufficientDeposit,
    InternalInvariantViolation,
    ReservationNotFound,
    ReservationStateError,
)

logger = logging.getLogger(__name__)


class ReservationState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    RELEASED = "released"


@dataclass
class Reservation:
    id: str
    amount: int
    created_at: float
    expires_at: float
    state: ReservationState = ReservationState.PENDING
    settled_at: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.state == ReservationState.PENDING


@dataclass(frozen=True)
class DepositSnapshot:
    """Read-only view of the deposit at one instant."""
    balance: int
    reserved: int
    pending: int

    @property
    def available(self) -> int:
        return self.balance - self.reserved

    def to_dict(self) -> Dict[str, int]:
        return {
            "balance": self.balance,
            "reserved": self.reserved,
            "available": self.available,
            "pending": self.pending,
        }


class DepositLedger:
    """
    Reserve / commit / release accounting against one paymaster deposit.

    ``commit`` and ``release`` are idempotent so the final pipeline step can be
    retried safely.
    """

    def __init__(self, balance: int = 0, clock: Callable[[], float] = time.time) -> None:
        if balance < 0:
            raise ValueError("balance must be non-negative")
        self._balance = balance
        self._reserved = 0
        self._pending = 0
        self._reservations: Dict[str, Reservation] = {}
        self._lock = threading.Lock()
        self._clock = clock

    # ---------------------------
    # Reads
    # ---------------------------
    def snapshot(self) -> DepositSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def get(self, reservation_id: str) -> Reservation:
        with self._lock:
            return replace(self._get_locked(reservation_id))

    # ---------------------------
    # Mutations
    # ---------------------------
    def credit(self, amount: int) -> DepositSnapshot:
        """Record a deposit top-up."""
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        with self._lock:
            self._balance += amount
            self._check_invariant_locked("credit")
            logger.info("Deposit credited by %d wei (balance %d)", amount, self._balance)
            return self._snapshot_locked()

    def reserve(self, amount: int, expires_at: float) -> str:
        if amount <= 0:
            raise ValueError("reservation amount must be positive")
        with self._lock:
            available = self._balance - self._reserved
            if available < amount:
                raise InsufficientDeposit(requested=amount, available=available)
            reservation = Reservation(
                id=uuid.uuid4().hex,
                amount=amount,
                created_at=self._clock(),
                expires_at=expires_at,
            )
            self._reserved += amount
            self._pending += 1
            self._reservations[reservation.id] = reservation
            self._check_invariant_locked("reserve")
            return reservation.id

    def commit(self, reservation_id: str) -> None:
        with self._lock:
            reservation = self._get_locked(reservation_id)
            if reservation.state == ReservationState.COMMITTED:
                return
            if reservation.state != ReservationState.PENDING:
                raise ReservationStateError(reservation_id, reservation.state.value, "commit")
            self._balance -= reservation.amount
            self._reserved -= reservation.amount
            self._pending -= 1
            reservation.state = ReservationState.COMMITTED
            reservation.settled_at = self._clock()
            self._check_invariant_locked("commit")

    def release(self, reservation_id: str) -> bool:
        """Release a pending reservation. Returns False when it was already released."""
        with self._lock:
            return self._release_locked(self._get_locked(reservation_id))

    def sweep_expired(self, now: float) -> int:
        """Release every pending reservation whose expiry is before ``now``."""
        with self._lock:
            expired = [r for r in self._reservations.values() if r.is_pending and r.expires_at < now]
            for reservation in expired:
                self._release_locked(reservation)
            return len(expired)

    def prune_settled(self, before: float) -> int:
        """Forget committed/released reservations settled before ``before``."""
        with self._lock:
            stale = [
                r.id
                for r in self._reservations.values()
                if not r.is_pending and r.settled_at is not None and r.settled_at < before
            ]
            for reservation_id in stale:
                del self._reservations[reservation_id]
            return len(stale)

    # ---------------------------
    # Internals (lock held)
    # ---------------------------
    def _get_locked(self, reservation_id: str) -> Reservation:
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        return reservation

    def _release_locked(self, reservation: Reservation) -> bool:
        if reservation.state == ReservationState.RELEASED:
            return False
        if reservation.state != ReservationState.PENDING:
            raise ReservationStateError(reservation.id, reservation.state.value, "release")
        self._reserved -= reservation.amount
        self._pending -= 1
        reservation.state = ReservationState.RELEASED
        reservation.settled_at = self._clock()
        self._check_invariant_locked("release")
        return True

    def _snapshot_locked(self) -> DepositSnapshot:
        return DepositSnapshot(
            balance=self._balance,
            reserved=self._reserved,
            pending=self._pending,
        )

    def _check_invariant_locked(self, operation: str) -> None:
        if 0 <= self._reserved <= self._balance:
            return
        logger.critical(
            "Deposit invariant violated after %s: balance=%d reserved=%d",
            operation,
            self._balance,
            self._reserved,
        )
        raise InternalInvariantViolation(
            f"Deposit invariant violated after {operation}",
            {"balance": self._balance, "reserved": self._reserved},
        )
