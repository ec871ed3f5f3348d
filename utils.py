import re
import string
import secrets
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation

CENT = Decimal("0.01")
REFERRAL_CODE_CHARS = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def money(value) -> Decimal:
    """Quantize to currency precision using banker's rounding."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_EVEN)


def parse_amount(value) -> Decimal:
    """Parse a user-supplied amount. Raises ValueError for junk or non-positive values."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise ValueError("Amount must be a positive number")
    if amount != amount.quantize(CENT):
        raise ValueError("Amount cannot have more than two decimal places")
    return amount.quantize(CENT)


def validate_email(email):
    return re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', email or "") is not None


def validate_phone(phone):
    return re.match(r'^\+?\d{9,15}$', phone or "") is not None


def generate_referral_code(exists, length=8, attempts=10):
    """Random upper-case code; `exists(code)` reports collisions."""
    for _ in range(attempts):
        code = ''.join(secrets.choice(REFERRAL_CODE_CHARS) for _ in range(length))
        if not exists(code):
            return code
    raise RuntimeError("Could not generate a unique referral code")
