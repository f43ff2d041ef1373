"""ISO 4217 precision lookup and exact decimal helpers.

Every monetary value in tripsplit is a ``decimal.Decimal``.
"""

from decimal import Decimal

DEFAULT_DECIMAL_PLACES = 2

# Minor units for currencies that differ from the 2-decimal default
_DECIMAL_PLACES: dict[str, int] = {
    # Zero decimal currencies
    "BIF": 0,
    "CLP": 0,
    "DJF": 0,
    "GNF": 0,
    "ISK": 0,
    "JPY": 0,
    "KMF": 0,
    "KRW": 0,
    "PYG": 0,
    "RWF": 0,
    "UGX": 0,
    "UYI": 0,
    "VND": 0,
    "VUV": 0,
    "XAF": 0,
    "XOF": 0,
    "XPF": 0,
    # Three decimal currencies
    "BHD": 3,
    "IQD": 3,
    "JOD": 3,
    "KWD": 3,
    "LYD": 3,
    "OMR": 3,
    "TND": 3,
    # Four decimal currencies
    "CLF": 4,
    "UYW": 4,
}


def normalize_code(code: str) -> str:
    """Normalize a currency code (``" usd "`` -> ``"USD"``)."""
    if not code or not isinstance(code, str):
        raise ValueError(f"Invalid currency code: {code!r}")
    normalized = code.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError(f"Currency code must be 3 letters: {code!r}")
    return normalized


def decimal_places(code: str) -> int:
    """Number of minor-unit digits for a currency (2 for unknown codes)."""
    return _DECIMAL_PLACES.get(normalize_code(code), DEFAULT_DECIMAL_PLACES)


def smallest_unit(code: str) -> Decimal:
    """
    Smallest representable amount of a currency.

    This is the epsilon used for every "equal within one unit" comparison:
    0.01 for USD, 1 for VND, 0.001 for KWD.
    """
    return Decimal(1).scaleb(-decimal_places(code))


def format_amount(amount: Decimal, code: str) -> str:
    """Format an amount with exactly the currency's number of decimals."""
    places = decimal_places(code)
    return f"{amount:.{places}f}"


def is_within_unit(a: Decimal, b: Decimal, code: str) -> bool:
    """True if two amounts differ by less than one smallest unit."""
    return abs(a - b) < smallest_unit(code)
