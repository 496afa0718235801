# whitelist screening + weight normalization
import logging
from typing import Any, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import WeightWarning
from .models import WhitelistEntry

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1


class WhitelistRejection(BaseModel):
    position: int
    address: str
    reason: str


class WhitelistScreen(BaseModel):
    accepted: List[WhitelistEntry] = Field(default_factory=list)
    rejected: List[WhitelistRejection] = Field(default_factory=list)


class WeightResult(BaseModel):
    weights: List[float] = Field(default_factory=list)
    warnings: List[WeightWarning] = Field(default_factory=list)


def _parse_weight(raw: Any) -> Optional[float]:
    """
    Numeric weights pass through; blank or non-numeric weights become None
    so normalize() can default them.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw).strip())
    except ValueError:
        return None


def screen_whitelist(rows: Iterable[Union[str, dict, WhitelistEntry]]) -> WhitelistScreen:
    """
    Validate raw whitelist rows before they reach the transaction stage.

    Rows are either bare address strings or {"address", "weight_percent"} dicts.
    Malformed addresses, duplicates and weights outside (0, 100] are rejected.
    """
    screen = WhitelistScreen()
    seen = set()
    for position, row in enumerate(rows):
        if isinstance(row, WhitelistEntry):
            address, raw_weight = row.address, row.weight_percent
        elif isinstance(row, dict):
            address, raw_weight = str(row.get("address", "")), row.get("weight_percent")
        else:
            address, raw_weight = str(row), None

        try:
            entry = WhitelistEntry(address=address, weight_percent=_parse_weight(raw_weight))
        except ValidationError as exc:
            reason = "; ".join(err["msg"] for err in exc.errors())
            screen.rejected.append(WhitelistRejection(position=position, address=address, reason=reason))
            continue

        if entry.address in seen:
            screen.rejected.append(WhitelistRejection(position=position, address=address, reason="duplicate address"))
            continue
        seen.add(entry.address)
        screen.accepted.append(entry)

    if screen.rejected:
        logger.warning("whitelist: rejected %d of %d rows", len(screen.rejected), position + 1)
    return screen


def normalize(entries: List[Any], weighting_enabled: bool) -> WeightResult:
    """
    Convert percentage weights to fractions aligned with the address list.

    An empty result tells the ledger to use a uniform weight of 1 per address.
    Totals are never rescaled to 100.
    """
    result = WeightResult()
    if not weighting_enabled:
        return result

    for position, entry in enumerate(entries):
        percent = getattr(entry, "weight_percent", None)
        if isinstance(percent, bool) or not isinstance(percent, (int, float)):
            warning = WeightWarning(
                position=position,
                address=getattr(entry, "address", ""),
                reason=f"missing or non-numeric weight {percent!r}, using {DEFAULT_WEIGHT}",
            )
            logger.warning("whitelist weight: %s (%s)", warning.reason, warning.address)
            result.warnings.append(warning)
            result.weights.append(DEFAULT_WEIGHT)
            continue
        result.weights.append(percent / 100)
    return result


def weight_total(entries: List[Any]) -> float:
    total = 0.0
    for entry in entries:
        percent = getattr(entry, "weight_percent", None)
        if isinstance(percent, (int, float)) and not isinstance(percent, bool):
            total += percent
    return total


def weight_deviation(entries: List[Any]) -> float:
    """Signed distance of the weight total from 100 (advisory only)."""
    return weight_total(entries) - 100
