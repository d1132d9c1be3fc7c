"""Rejection reasons raised by the raffle engine.

Every error is raised before any state is touched, so a rejected call never
leaves partial effects behind. The ``code`` is the stable identifier exposed
over the API; ``status_code`` is the HTTP status the web gateway answers with.
"""

from __future__ import annotations


class RaffleError(Exception):
    """Base class for every rejected raffle operation."""

    code = "RaffleError"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


# ----------------------------------------------------------------------
# Authorization
# ----------------------------------------------------------------------
class AuthorizationError(RaffleError):
    status_code = 403


class Unauthorized(AuthorizationError):
    code = "Unauthorized"


class Paused(AuthorizationError):
    code = "Paused"
    status_code = 423


# ----------------------------------------------------------------------
# Round state
# ----------------------------------------------------------------------
class RoundStateError(RaffleError):
    status_code = 409


class RaffleClosed(RoundStateError):
    code = "RaffleClosed"


class RaffleActive(RoundStateError):
    code = "RaffleActive"


class DeadlinePassed(RoundStateError):
    code = "DeadlinePassed"


class RaffleFull(RoundStateError):
    code = "RaffleFull"


class NoParticipants(RoundStateError):
    code = "NoParticipants"


# ----------------------------------------------------------------------
# Payment
# ----------------------------------------------------------------------
class PaymentError(RaffleError):
    status_code = 402


class WrongFee(PaymentError):
    code = "WrongFee"


# ----------------------------------------------------------------------
# Ledger
# ----------------------------------------------------------------------
class LedgerError(RaffleError):
    status_code = 409


class NoRefund(LedgerError):
    code = "NoRefund"


class NoProfit(LedgerError):
    code = "NoProfit"


class InsufficientBalance(LedgerError):
    code = "InsufficientBalance"


# ----------------------------------------------------------------------
# Lookup / input
# ----------------------------------------------------------------------
class InvalidIndex(RaffleError):
    code = "InvalidIndex"
    status_code = 404


class InvalidAddress(RaffleError):
    code = "InvalidAddress"
    status_code = 400
