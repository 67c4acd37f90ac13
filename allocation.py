import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from money import normalize_currency, round2, to_amount


@dataclass(frozen=True)
class LegacyServiceRef:
    service_id: int
    booking_id: Optional[int]
    currency: str
    cost_price: float


@dataclass(frozen=True)
class ServiceShare:
    service_id: int
    booking_id: Optional[int]
    currency: str
    amount: float


def parse_service_ids(raw: Any) -> list[int]:
    """Positive integer ids from a list or a comma separated string.

    Order of first appearance is kept and duplicates are dropped.
    """
    if isinstance(raw, str):
        parts: Iterable[Any] = [p.strip() for p in raw.split(",") if p.strip()]
    elif isinstance(raw, (list, tuple)):
        parts = raw
    else:
        return []
    ids: list[int] = []
    seen: set[int] = set()
    for part in parts:
        if isinstance(part, bool):
            continue
        try:
            number = float(part)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(number) or number <= 0:
            continue
        sid = int(number)
        if sid <= 0 or sid in seen:
            continue
        seen.add(sid)
        ids.append(sid)
    return ids


def allocate_legacy_amount(
    total: Any,
    currency: Optional[str],
    services: Sequence[LegacyServiceRef],
) -> list[ServiceShare]:
    """Split an un-itemised payment across services by cost share.

    ``services`` must follow the order of the referencing id list. Repeated
    services are counted once. A bundle spanning more than one currency, or
    one whose payment currency is unknown, is not split at all and yields an
    empty list. The last service absorbs the running remainder so the shares
    always add back up to ``round2(total)``.
    """
    ordered: list[LegacyServiceRef] = []
    seen: set[int] = set()
    for svc in services:
        if svc.service_id in seen:
            continue
        seen.add(svc.service_id)
        ordered.append(svc)
    if not ordered:
        return []

    code = normalize_currency(currency, default="")
    if not code:
        return []
    if any(
        normalize_currency(svc.currency, default="") != code for svc in ordered
    ):
        return []

    amount = to_amount(total)
    weights = [max(to_amount(svc.cost_price), 0.0) for svc in ordered]
    total_weight = sum(weights)
    count = len(ordered)

    shares: list[ServiceShare] = []
    remaining = round2(amount)
    for idx, svc in enumerate(ordered):
        is_last = idx == count - 1
        if total_weight > 0:
            ratio = weights[idx] / total_weight
        else:
            ratio = 1 / count
        if is_last:
            share = remaining
        else:
            share = round2(amount * ratio)
            remaining = round2(remaining - share)
        shares.append(
            ServiceShare(
                service_id=svc.service_id,
                booking_id=svc.booking_id,
                currency=code,
                amount=share,
            )
        )
    return shares
