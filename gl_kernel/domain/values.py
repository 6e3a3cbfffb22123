"""
Values -- Immutable, self-validating monetary value objects.

Responsibility:
    Provides Currency, Money and ExchangeRate: the only types that carry
    amounts through the posting pipeline.  Raw floats never enter; raw
    Decimals are wrapped at the boundary.

Architecture position:
    Kernel > Domain, no I/O.
    Imported by every engine.  No outward dependencies except
    gl_kernel.domain.currency (CurrencyRegistry).

Invariants enforced:
    - Amounts are Decimal, never binary floating point.
    - Addition and subtraction are exact; they never round.
    - The only rounding happens in ``multiply_rate`` (tax, FX) and in an
      explicit ``round()``, both ROUND_HALF_UP (half away from zero) to the
      currency's minor unit.
    - Balance comparisons use one minor unit of tolerance, derived from
      the currency's decimal places, never a hardcoded epsilon.

Failure modes:
    - ValueError for a non-finite amount, an unknown currency or a
      non-positive rate
    - ValueError when arithmetic mixes different currencies
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import total_ordering

from gl_kernel.domain.currency import CurrencyRegistry


def to_decimal(value: Decimal | str | int, label: str) -> Decimal:
    if isinstance(value, float):
        raise TypeError(f"{label} must not be float: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid {label}: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Invalid {label}: {value!r}")
    return result


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Validated and normalized (uppercased) on construction.
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if isinstance(self.code, str) else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise ValueError(f"Invalid ISO 4217 currency code: {self.code!r}")
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def rounding_tolerance(self) -> Decimal:
        """One minor unit (0.01 for MYR, 1 for JPY)."""
        return CurrencyRegistry.get_rounding_tolerance(self.code)

    @property
    def quantum(self) -> Decimal:
        return self.rounding_tolerance

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


def round_money(amount: Decimal, currency: Currency | str) -> Decimal:
    """Round a raw Decimal half away from zero to the currency's minor unit."""
    if isinstance(currency, str):
        currency = Currency(currency)
    return amount.quantize(currency.quantum, rounding=ROUND_HALF_UP)


@total_ordering
@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency -- they are never separated.

    Guarantees:
        - Immutable and hashable
        - Arithmetic enforces the same-currency constraint
        - Does not auto-round; ``round()`` and ``multiply_rate()`` are the
          only rounding points
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount, "amount"))
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(
                f"currency must be Currency or str, got {type(self.currency)}"
            )

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """Factory method for creating Money."""
        return cls(amount=to_decimal(amount, "amount"), currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        return cls(amount=Decimal("0"), currency=currency)

    @classmethod
    def from_minor_units(cls, units: int, currency: str | Currency) -> Money:
        """Build Money from an integer count of minor units (cents)."""
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(
            amount=Decimal(units).scaleb(-currency.decimal_places),
            currency=currency,
        )

    def to_minor_units(self) -> int:
        """
        Integer count of minor units.

        Raises:
            ValueError: If the amount carries more precision than the
                currency allows.  Call ``round()`` first to opt in.
        """
        scaled = self.amount.scaleb(self.currency.decimal_places)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"{self} has more than {self.currency.decimal_places} decimal places"
            )
        return int(scaled)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    @property
    def exceeds_precision(self) -> bool:
        """True when the amount has digits below the currency's minor unit."""
        return self.amount != round_money(self.amount, self.currency)

    def round(self) -> Money:
        """Round half away from zero to the currency's decimal places."""
        return Money(
            amount=round_money(self.amount, self.currency), currency=self.currency
        )

    def multiply_rate(self, rate: Decimal | str | int) -> Money:
        """
        Multiply by a rate (tax or FX) with a single controlled rounding.

        The product is computed exactly and rounded once, half away from
        zero, to the currency's minor unit.
        """
        rate = to_decimal(rate, "rate")
        return Money(
            amount=round_money(self.amount * rate, self.currency),
            currency=self.currency,
        )

    def is_within_tolerance(self, other: Money) -> bool:
        """True when the two amounts differ by at most one minor unit."""
        return is_within_tolerance(self, other)

    def _other_amount(self, other: Money, verb: str) -> Decimal:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {verb} amounts in different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return other.amount

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.amount + self._other_amount(other, "add"), self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.amount - self._other_amount(other, "subtract"), self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.amount), self.currency)

    # remaining comparisons come from total_ordering
    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount < self._other_amount(other, "compare")

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"

    def __repr__(self) -> str:
        return f"Money('{self.amount}', '{self.currency}')"


def is_within_tolerance(left: Money, right: Money) -> bool:
    """Balance comparison: |left - right| <= one minor unit of the currency."""
    return abs((left - right).amount) <= left.currency.rounding_tolerance


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """
    Exchange rate between two currencies.

    Represents: 1 unit of from_currency = rate units of to_currency.
    The rate is supplied by the caller; this engine never looks rates up.
    """

    from_currency: Currency
    to_currency: Currency
    rate: Decimal

    def __post_init__(self) -> None:
        if isinstance(self.from_currency, str):
            object.__setattr__(self, "from_currency", Currency(self.from_currency))
        if isinstance(self.to_currency, str):
            object.__setattr__(self, "to_currency", Currency(self.to_currency))
        object.__setattr__(self, "rate", to_decimal(self.rate, "exchange rate"))
        if self.rate <= 0:
            raise ValueError(f"Exchange rate must be positive: {self.rate}")

    @classmethod
    def of(
        cls,
        from_currency: str | Currency,
        to_currency: str | Currency,
        rate: Decimal | str | int,
    ) -> ExchangeRate:
        return cls(from_currency=from_currency, to_currency=to_currency, rate=rate)

    def convert(self, money: Money) -> Money:
        """
        Convert money into ``to_currency``, rounded once to its minor unit.

        Raises:
            ValueError: If money currency doesn't match from_currency.
        """
        if money.currency != self.from_currency:
            raise ValueError(
                f"Money currency {money.currency} doesn't match "
                f"rate from_currency {self.from_currency}"
            )
        return Money(
            amount=round_money(money.amount * self.rate, self.to_currency),
            currency=self.to_currency,
        )

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_currency.code, self.to_currency.code)

    def __str__(self) -> str:
        return f"{self.from_currency}/{self.to_currency} = {self.rate}"
