from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .errors import ValidationError
from .types import TransactionPlan

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")
_CALLDATA_RE = re.compile(r"0x(?:[0-9a-fA-F]{2})*")
_HEX_QUANTITY_RE = re.compile(r"0x[0-9a-fA-F]+")
_DECIMAL_QUANTITY_RE = re.compile(r"[0-9]+")


def validate_transaction_plans(raw: Any) -> list[TransactionPlan]:
    """Validate an untrusted batch of transaction descriptors.

    The whole batch is rejected if any element is malformed. Fields other
    than ``to``, ``data`` and ``value`` are carried through in ``extra``.
    """
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"Transaction batch must be a list, got {type(raw).__name__}")
    if not raw:
        raise ValidationError("Transaction batch is empty")

    plans: list[TransactionPlan] = []
    for index, item in enumerate(raw):
        plans.append(_validate_plan(item, index))
    return plans


def _validate_plan(item: Any, index: int) -> TransactionPlan:
    if not isinstance(item, Mapping):
        raise ValidationError(f"Transaction {index} is not an object")

    to = item.get("to")
    if not isinstance(to, str) or not _ADDRESS_RE.fullmatch(to):
        raise ValidationError(f"Transaction {index} has an invalid 'to' address: {to!r}")

    data = item.get("data")
    if not isinstance(data, str) or not _CALLDATA_RE.fullmatch(data):
        raise ValidationError(f"Transaction {index} has invalid 'data'")

    value = _normalize_value(item.get("value"), index)
    extra = {k: v for k, v in item.items() if k not in ("to", "data", "value")}
    return TransactionPlan(to=to, data=data, value=value, extra=extra)


def _normalize_value(raw: Any, index: int) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"Transaction {index} has invalid 'value': {raw!r}")
    if isinstance(raw, int):
        if raw < 0:
            raise ValidationError(f"Transaction {index} has negative 'value'")
        return str(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if _DECIMAL_QUANTITY_RE.fullmatch(text) or _HEX_QUANTITY_RE.fullmatch(text):
            return text
    raise ValidationError(f"Transaction {index} has invalid 'value': {raw!r}")
