"""
Currency registry -- ISO 4217 codes and their minor-unit precision.

Responsibility:
    Single source of truth for which currency codes a journal may be posted
    in and how many decimal places each one carries.  The balance tolerance
    of a journal is derived from these decimal places (one minor unit), so
    no caller ever hardcodes ``0.01``.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  Used by ``values.Currency``.

Failure modes:
    - ``validate`` raises ValueError for unknown or malformed codes.
    - Lookups for unknown codes fall back to two decimal places.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True, slots=True)
class CurrencyInfo:
    """Precision metadata for one ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str = ""
    rounding_tolerance: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "rounding_tolerance",
            Decimal(1).scaleb(-self.decimal_places),
        )


# Active ISO 4217 codes with two decimal places.
_TWO_DECIMAL_CODES = """
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BMD BND BOB BOV
    BRL BSD BTN BWP BYN BZD CAD CDF CHE CHF CHW CNY COP COU CRC CUP CVE CZK
    DKK DOP DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GTQ GYD HKD HNL
    HTG HUF IDR ILS INR IRR JMD KES KGS KHR KPW KYD KZT LAK LBP LKR LRD LSL
    MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MXV MYR MZN NAD NGN NIO
    NOK NPR NZD PAB PEN PGK PHP PKR PLN QAR RON RSD RUB SAR SBD SCR SDG SEK
    SGD SHP SLE SOS SRD SSP STN SVC SYP SZL THB TJS TMT TOP TRY TTD TWD TZS
    UAH USD USN UYU UZS VED VES WST XCD YER ZAR ZMW ZWL
"""

_ZERO_DECIMAL_CODES = """
    BIF CLP DJF GNF ISK JPY KMF KRW PYG RWF UGX UYI VND VUV XAF XOF XPF
    XAG XAU XBA XBB XBC XBD XDR XPD XPT XSU XTS XUA XXX
"""

_THREE_DECIMAL_CODES = "BHD IQD JOD KWD LYD OMR TND"

_NAMES = {
    "MYR": "Malaysian Ringgit",
    "SGD": "Singapore Dollar",
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "Pound Sterling",
    "JPY": "Japanese Yen",
    "KWD": "Kuwaiti Dinar",
    "CLF": "Unidad de Fomento",
    "UYW": "Unidad Previsional",
}


def _build_registry() -> dict[str, CurrencyInfo]:
    registry: dict[str, CurrencyInfo] = {}
    for places, codes in (
        (2, _TWO_DECIMAL_CODES),
        (0, _ZERO_DECIMAL_CODES),
        (3, _THREE_DECIMAL_CODES),
    ):
        for code in codes.split():
            registry[code] = CurrencyInfo(code, places, _NAMES.get(code, ""))
    for code in ("CLF", "UYW"):
        registry[code] = CurrencyInfo(code, 4, _NAMES[code])
    return registry


class CurrencyRegistry:
    """Lookup of ISO 4217 currencies by code."""

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = _build_registry()

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is valid ISO 4217."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def get_rounding_tolerance(cls, code: str) -> Decimal:
        """One minor unit of the currency; the journal balance tolerance."""
        return Decimal(1).scaleb(-cls.get_decimal_places(code))

    @classmethod
    def validate(cls, code: str) -> str:
        """Validate and normalize a currency code."""
        if not code or not isinstance(code, str):
            raise ValueError(f"Invalid currency code: {code!r}")

        normalized = code.upper().strip()
        if len(normalized) != 3:
            raise ValueError(f"Currency code must be 3 characters: {code!r}")
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
        return normalized

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)
