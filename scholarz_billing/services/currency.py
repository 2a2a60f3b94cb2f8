import math
from dataclasses import dataclass
from typing import Optional

from scholarz_billing.core.errors import PaymentValidationError

HOME_CURRENCY = "ZAR"
SANDBOX_CURRENCY = "USD"
SUPPORTED_CURRENCIES = {HOME_CURRENCY, SANDBOX_CURRENCY}
ZAR_PER_USD = 18
MINIMUM_AMOUNT = 0.01

# Published price points. Plan reuse compares these values against amounts read back
# from PayPal, so they must not depend on float division.
CANONICAL_USD_AMOUNTS = {
    0: 0.00,
    99: 5.50,
    149: 8.28,
    299: 16.61,
    999: 55.50,
    2499: 138.83,
    2899: 161.06,
}


@dataclass(frozen=True)
class NormalizedAmount:
    amount: float
    currency: str

    @property
    def value(self) -> str:
        return f"{self.amount:.2f}"


def validate_amount(amount: float) -> float:
    try:
        amount = float(amount)
    except (TypeError, ValueError) as exc:
        raise PaymentValidationError("Amount must be a number") from exc
    if not math.isfinite(amount):
        raise PaymentValidationError("Amount must be a finite number")
    if amount < 0:
        raise PaymentValidationError("Amount cannot be negative")
    return amount


def convert_home_amount(amount: float) -> float:
    amount = validate_amount(amount)
    if amount in CANONICAL_USD_AMOUNTS:
        return CANONICAL_USD_AMOUNTS[amount]
    return round(amount / ZAR_PER_USD, 2)


def _clamp(amount: float, original: float) -> float:
    if original == 0:
        return 0.0
    return max(MINIMUM_AMOUNT, round(amount, 2))


def normalize_amount(amount: float, currency: Optional[str], environment: str) -> NormalizedAmount:
    """
    Map a home-currency (ZAR) amount to what PayPal accepts in ``environment``.
    The sandbox does not support ZAR, so ZAR/unspecified requests are charged in USD there.
    """
    amount = validate_amount(amount)
    requested = (currency or "").strip().upper() or None
    if requested and requested not in SUPPORTED_CURRENCIES:
        raise PaymentValidationError(f"Unsupported currency: {requested}")

    if environment == "sandbox" and requested in (None, HOME_CURRENCY):
        return NormalizedAmount(_clamp(convert_home_amount(amount), amount), SANDBOX_CURRENCY)
    return NormalizedAmount(_clamp(amount, amount), requested or HOME_CURRENCY)
