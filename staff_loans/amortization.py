"""
Amortization Calculator Module

Pure functions for loan pricing. Two conventions live side by side:

- ``total_interest`` is FLAT-RATE: interest is charged on the full principal
  for the whole term. This is what the loan's payable amount and repayment
  schedule are built from.
- ``installment_amount`` is the reducing-balance annuity (EMI). It is only
  shown to the applicant as an indicative monthly figure.

The two are not reconciled: ``installment_amount * months`` will generally
differ from ``principal + total_interest`` when the rate is non-zero.
"""

from decimal import Decimal

from .money import Numeric, ZERO, to_decimal, round_money


def _monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    return annual_rate_percent / Decimal('100') / Decimal('12')


def _validate(principal: Decimal, annual_rate_percent: Decimal, months: int) -> None:
    if principal <= 0:
        raise ValueError("Principal must be positive")
    if annual_rate_percent < 0:
        raise ValueError("Interest rate cannot be negative")
    if months < 1:
        raise ValueError("Term must be at least one month")


def installment_amount(principal: Numeric, annual_rate_percent: Numeric, months: int) -> Decimal:
    """
    Indicative monthly installment (EMI)

    Args:
        principal: Amount borrowed
        annual_rate_percent: Annual rate in percent, e.g. 12 for 12%
        months: Number of monthly installments

    Returns:
        principal / months for a zero rate, otherwise
        P * r * (1 + r)^n / ((1 + r)^n - 1) with r the monthly rate,
        rounded to cents
    """
    principal = to_decimal(principal)
    rate = to_decimal(annual_rate_percent)
    _validate(principal, rate, months)

    if rate == 0:
        return round_money(principal / Decimal(months))

    r = _monthly_rate(rate)
    factor = (Decimal('1') + r) ** months
    return round_money(principal * r * factor / (factor - Decimal('1')))


def total_interest(principal: Numeric, annual_rate_percent: Numeric, months: int) -> Decimal:
    """Flat-rate interest over the whole term: P * rate/100/12 * n, rounded to cents"""
    principal = to_decimal(principal)
    rate = to_decimal(annual_rate_percent)
    _validate(principal, rate, months)

    if rate == 0:
        return ZERO

    return round_money(principal * _monthly_rate(rate) * Decimal(months))


def total_payable(principal: Numeric, annual_rate_percent: Numeric, months: int) -> Decimal:
    """Principal plus flat-rate interest"""
    return round_money(to_decimal(principal) + total_interest(principal, annual_rate_percent, months))
