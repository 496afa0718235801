# stable option id <-> 1-based ledger index
import logging
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, Field

from .errors import MappingFault

logger = logging.getLogger(__name__)


class MappingResult(BaseModel):
    values: List[Any] = Field(default_factory=list)
    faults: List[MappingFault] = Field(default_factory=list)


def _option_ids(poll: Any) -> List[str]:
    return [option.stable_id for option in poll.options]


def index_map(poll: Any) -> Dict[str, int]:
    """
    stable_id -> index, as fixed by the current option order.
    """
    return {stable_id: position + 1 for position, stable_id in enumerate(_option_ids(poll))}


def to_indices(poll: Any, selected_ids: Iterable[str]) -> MappingResult:
    """
    Map selected option ids to ledger indices, preserving input order.
    Unknown ids are dropped and reported, never replaced.
    """
    lookup = index_map(poll)
    result = MappingResult()
    for stable_id in selected_ids:
        index = lookup.get(stable_id)
        if index is None:
            fault = MappingFault(
                kind="unknown_option",
                value=stable_id,
                message=f"option id {stable_id!r} is not in poll {poll.title!r}",
            )
            logger.warning("mapping fault: %s", fault.message)
            result.faults.append(fault)
            continue
        result.values.append(index)
    return result


def from_indices(poll: Any, indices: Iterable[int]) -> MappingResult:
    """
    Inverse of to_indices. Indices outside [1, len(options)] are dropped and reported.
    """
    ids = _option_ids(poll)
    result = MappingResult()
    for index in indices:
        if isinstance(index, bool) or not isinstance(index, int) or not 1 <= index <= len(ids):
            fault = MappingFault(
                kind="index_out_of_range",
                value=index if isinstance(index, (int, str)) else repr(index),
                message=f"index {index!r} is outside 1..{len(ids)} for poll {poll.title!r}",
            )
            logger.warning("mapping fault: %s", fault.message)
            result.faults.append(fault)
            continue
        result.values.append(ids[index - 1])
    return result
