"""
Simulated mobile-money payment gateway.

No external provider is contacted: every charge succeeds immediately. The
gateway is supplied to the payment routes through ``get_payment_gateway`` so
another implementation can be swapped in.
"""
import logging
import random
import time
from dataclasses import dataclass

from models import Payment

logger = logging.getLogger(__name__)


@dataclass
class ChargeResult:
    status: str  # completed | failed | pending
    transaction_id: str = None


def _millis() -> int:
    return int(time.time() * 1000)


def generate_reference() -> str:
    """Server-side payment reference, e.g. TUKU-1700000000000-4821."""
    return f"TUKU-{_millis()}-{random.randint(1000, 9999)}"


class MobileMoneyGateway:
    def charge(self, payment: Payment) -> ChargeResult:
        logger.info(
            "Simulated %s charge of %s from %s (ref %s)",
            payment.payment_method, payment.amount, payment.phone_number, payment.reference,
        )
        return ChargeResult(status="completed", transaction_id=f"TXN-{_millis()}")


_gateway = MobileMoneyGateway()


def get_payment_gateway() -> MobileMoneyGateway:
    """Dependency returning the gateway used by the payment routes."""
    return _gateway
