"""Shared utilities used across the marketplace booking core."""

import re
from typing import Optional

KENYA_COUNTRY_CODE = "254"


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("0712 345 678")
        '0712345678'
        >>> normalize_phone("+254 (712) 345-678")
        '+254712345678'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def to_mpesa_msisdn(value: str) -> Optional[str]:
    """Convert a Kenyan mobile number to the 2547XXXXXXXX form M-Pesa expects.

    Accepts local (07.., 01..), international (+254.., 254..) and bare
    subscriber (7.., 1..) forms. Returns None when the number is not a
    Kenyan mobile number.

    Examples:
        >>> to_mpesa_msisdn("0712 345 678")
        '254712345678'
        >>> to_mpesa_msisdn("+254 110 345 678")
        '254110345678'
        >>> to_mpesa_msisdn("12345") is None
        True
    """
    digits = normalize_phone(value).lstrip("+")
    if digits.startswith(KENYA_COUNTRY_CODE):
        subscriber = digits[len(KENYA_COUNTRY_CODE):]
    elif digits.startswith("0"):
        subscriber = digits[1:]
    else:
        subscriber = digits
    if len(subscriber) != 9 or subscriber[0] not in "71":
        return None
    return KENYA_COUNTRY_CODE + subscriber


def format_kes(amount: float) -> str:
    """Format an amount as Kenyan shillings.

    Examples:
        >>> format_kes(1500)
        'KES 1,500.00'
    """
    return f"KES {amount:,.2f}"
