"""
Typed view of an organization's no-show configuration.

The settings blob keeps the `no_show_management` section as free JSON; it
is parsed here into a NoShowPolicy whose penalty is one of three variants
carrying only the fields that variant needs.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from classbook.core.config import get_settings
from classbook.core.conversions import coerce_decimal, coerce_int
from classbook.core.errors import InvalidPolicy

CREDIT_LOSS = "credit_loss"
FEE = "fee"
SUSPENSION = "suspension"


@dataclass(frozen=True)
class CreditLossPenalty:
    credits: int = 1
    kind: str = CREDIT_LOSS


@dataclass(frozen=True)
class FeePenalty:
    amount: Decimal
    currency: str = "USD"
    kind: str = FEE


@dataclass(frozen=True)
class SuspensionPenalty:
    days: int = 7
    kind: str = SUSPENSION


Penalty = Union[CreditLossPenalty, FeePenalty, SuspensionPenalty]


@dataclass(frozen=True)
class NoShowPolicy:
    enabled: bool
    grace_minutes: int
    lookback_hours: int
    penalty: Penalty


def _non_negative_int(section: Dict[str, Any], key: str, default: int) -> int:
    raw = section.get(key)
    if raw is None:
        return default
    value = coerce_int(raw)
    if value is None or value < 0:
        raise InvalidPolicy(f"no_show_management.{key} must be a non-negative integer, got {raw!r}")
    return value


def _parse_penalty(section: Dict[str, Any]) -> Penalty:
    kind = section.get("penalty_type") or CREDIT_LOSS

    if kind == CREDIT_LOSS:
        return CreditLossPenalty(credits=_non_negative_int(section, "credits", 1))

    if kind == FEE:
        raw_amount = section.get("penalty_amount", 10)
        amount = coerce_decimal(raw_amount)
        if amount is None or amount < 0:
            raise InvalidPolicy(f"no_show_management.penalty_amount is invalid: {raw_amount!r}")
        currency = str(section.get("penalty_currency") or "USD").upper()
        if len(currency) != 3:
            raise InvalidPolicy(f"no_show_management.penalty_currency is invalid: {currency!r}")
        return FeePenalty(amount=amount.quantize(Decimal("0.01")), currency=currency)

    if kind == SUSPENSION:
        return SuspensionPenalty(days=_non_negative_int(section, "suspension_days", 7))

    raise InvalidPolicy(f"Unknown no-show penalty type: {kind!r}")


def parse_no_show_policy(settings_blob: Optional[Dict[str, Any]]) -> NoShowPolicy:
    """Build a NoShowPolicy from an organization settings blob"""
    defaults = get_settings()
    section = (settings_blob or {}).get("no_show_management") or {}
    if not isinstance(section, dict):
        raise InvalidPolicy("no_show_management must be an object")

    return NoShowPolicy(
        enabled=bool(section.get("no_show_enabled", False)),
        grace_minutes=_non_negative_int(
            section, "no_show_window_minutes", defaults.no_show_default_grace_minutes
        ),
        lookback_hours=_non_negative_int(section, "lookback_hours", defaults.no_show_lookback_hours),
        penalty=_parse_penalty(section),
    )
