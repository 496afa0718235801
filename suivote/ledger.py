# Sui fullnode JSON-RPC: move call builders, reads, event queries, execution
import itertools
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from .config import ADMIN_ID, CLOCK_OBJECT_ID, GAS_BUDGET, PACKAGE_ID, REQUEST_TIMEOUT, SUI_DECIMALS, SUI_RPC_URL
from .errors import LedgerError
from .models import MoveCall, VoteRecord, VoteStatus

logger = logging.getLogger(__name__)

MODULE = "voting"


class Signer(Protocol):
    """Wallet side of execution: owns the address and signs transaction bytes."""

    address: str

    async def sign(self, tx_bytes: str) -> str:
        ...


def vote_type(package_id: str = PACKAGE_ID) -> str:
    return f"{package_id}::{MODULE}::Vote"


def event_type(name: str, package_id: str = PACKAGE_ID) -> str:
    return f"{package_id}::{MODULE}::{name}"


def is_vote_type(object_type: str, package_id: str = PACKAGE_ID) -> bool:
    """Exact Vote type, optionally generic; VoteAdmin and friends do not match."""
    expected = vote_type(package_id)
    return object_type == expected or object_type.startswith(expected + "<")


def vote_status_at(start_ms: int, end_ms: int, is_cancelled: bool, now_ms: int) -> VoteStatus:
    if is_cancelled:
        return VoteStatus.CLOSED
    if now_ms < start_ms:
        return VoteStatus.UPCOMING
    if now_ms <= end_ms:
        return VoteStatus.ACTIVE
    return VoteStatus.CLOSED


# ----------- move call builders -----------

def _call(function: str, arguments: List[Any], package_id: str, gas_budget: int) -> MoveCall:
    return MoveCall(package=package_id, module=MODULE, function=function, arguments=arguments, gas_budget=gas_budget)


def create_complete_vote_call(
    *,
    title: str,
    description: str,
    start_timestamp: int,
    end_timestamp: int,
    required_token: str,
    required_amount: int,
    payment_amount: int,
    require_all_polls: bool,
    show_live_stats: bool,
    polls: Sequence[Dict[str, Any]],
    is_token_weighted: bool,
    token_weight: int,
    whitelist_addresses: Sequence[str],
    whitelist_weights: Sequence[int],
    package_id: str = PACKAGE_ID,
    admin_id: str = ADMIN_ID,
    clock_id: str = CLOCK_OBJECT_ID,
    gas_budget: int = GAS_BUDGET,
) -> MoveCall:
    """
    One call creating the vote, every poll and every option.

    Polls are flattened into parallel vectors; option_counts[i] says how many
    consecutive entries of option_texts / option_media belong to poll i.
    """
    poll_titles, poll_descriptions = [], []
    multi_select, max_selections, required, option_counts = [], [], [], []
    option_texts, option_media = [], []
    for poll in polls:
        poll_titles.append(poll["title"])
        poll_descriptions.append(poll["description"])
        multi_select.append(poll["is_multi_select"])
        max_selections.append(str(poll["max_selections"]))
        required.append(poll["is_required"])
        option_counts.append(str(len(poll["options"])))
        for option in poll["options"]:
            option_texts.append(option["text"])
            option_media.append(option["media_reference"] or "")

    arguments = [
        admin_id,
        title,
        description,
        str(start_timestamp),
        str(end_timestamp),
        required_token,
        str(required_amount),
        str(payment_amount),
        require_all_polls,
        show_live_stats,
        poll_titles,
        poll_descriptions,
        multi_select,
        max_selections,
        required,
        option_counts,
        option_texts,
        option_media,
        is_token_weighted,
        str(token_weight),
        list(whitelist_addresses),
        [str(w) for w in whitelist_weights],
        clock_id,
    ]
    return _call("create_complete_vote", arguments, package_id, gas_budget)


def cast_vote_call(
    vote_id: str,
    poll_index: int,
    option_indices: Sequence[int],
    payment_coin_id: str,
    package_id: str = PACKAGE_ID,
    admin_id: str = ADMIN_ID,
    clock_id: str = CLOCK_OBJECT_ID,
    gas_budget: int = GAS_BUDGET,
) -> MoveCall:
    if poll_index < 1:
        raise ValueError("poll index must be 1 or greater")
    if not option_indices:
        raise ValueError("at least one option must be selected")
    arguments = [vote_id, admin_id, str(poll_index), [str(i) for i in option_indices], payment_coin_id, clock_id]
    return _call("cast_vote", arguments, package_id, gas_budget)


def cast_multiple_votes_call(
    vote_id: str,
    poll_indices: Sequence[int],
    option_indices_per_poll: Sequence[Sequence[int]],
    payment_coin_id: str,
    package_id: str = PACKAGE_ID,
    admin_id: str = ADMIN_ID,
    clock_id: str = CLOCK_OBJECT_ID,
    gas_budget: int = GAS_BUDGET,
) -> MoveCall:
    if not poll_indices:
        raise ValueError("at least one poll index must be specified")
    if len(poll_indices) != len(option_indices_per_poll):
        raise ValueError("number of poll indices must match number of option index lists")
    for poll_index, indices in zip(poll_indices, option_indices_per_poll):
        if poll_index < 1:
            raise ValueError(f"poll index {poll_index} must be 1 or greater")
        if not indices:
            raise ValueError(f"at least one option must be selected for poll {poll_index}")
    arguments = [
        vote_id,
        admin_id,
        [str(i) for i in poll_indices],
        [[str(i) for i in indices] for indices in option_indices_per_poll],
        payment_coin_id,
        clock_id,
    ]
    return _call("cast_multiple_votes", arguments, package_id, gas_budget)


def close_vote_call(vote_id: str, package_id: str = PACKAGE_ID, clock_id: str = CLOCK_OBJECT_ID, gas_budget: int = GAS_BUDGET) -> MoveCall:
    return _call("close_vote", [vote_id, clock_id], package_id, gas_budget)


def cancel_vote_call(vote_id: str, package_id: str = PACKAGE_ID, clock_id: str = CLOCK_OBJECT_ID, gas_budget: int = GAS_BUDGET) -> MoveCall:
    return _call("cancel_vote", [vote_id, clock_id], package_id, gas_budget)


def start_vote_call(vote_id: str, package_id: str = PACKAGE_ID, clock_id: str = CLOCK_OBJECT_ID, gas_budget: int = GAS_BUDGET) -> MoveCall:
    return _call("start_vote", [vote_id, clock_id], package_id, gas_budget)


def extend_voting_period_call(
    vote_id: str,
    new_end_timestamp: int,
    now_ms: Optional[int] = None,
    package_id: str = PACKAGE_ID,
    clock_id: str = CLOCK_OBJECT_ID,
    gas_budget: int = GAS_BUDGET,
) -> MoveCall:
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    if new_end_timestamp <= now_ms:
        raise ValueError("new end timestamp must be in the future")
    return _call("extend_voting_period", [vote_id, str(new_end_timestamp), clock_id], package_id, gas_budget)


# ----------- client -----------

def _option_string(value: Any) -> Optional[str]:
    """Move Option<String> shows up either as a plain string or as {fields: {value}}."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        inner = (value.get("fields") or {}).get("value")
        if isinstance(inner, str) and inner:
            return inner
        vec = (value.get("fields") or {}).get("vec") or value.get("vec")
        if isinstance(vec, list) and vec and isinstance(vec[0], str):
            return vec[0]
    return None


def parse_vote_object(vote_id: str, data: Dict[str, Any], now_ms: int, package_id: str = PACKAGE_ID) -> Optional[VoteRecord]:
    content = data.get("content") or {}
    if content.get("dataType") != "moveObject":
        return None
    object_type = str(data.get("type") or content.get("type") or "")
    if not is_vote_type(object_type, package_id):
        logger.warning("object %s is not a Vote (%s)", vote_id, object_type)
        return None

    fields = content.get("fields") or {}
    start = int(fields.get("start_timestamp") or 0)
    end = int(fields.get("end_timestamp") or 0)
    is_cancelled = bool(fields.get("is_cancelled", False))
    token = _option_string(fields.get("required_token"))
    whitelist_count = int(fields.get("whitelist_count") or 0)
    return VoteRecord(
        id=vote_id,
        creator=fields.get("creator"),
        title=fields.get("title") or "",
        description=fields.get("description") or "",
        status=vote_status_at(start, end, is_cancelled, now_ms),
        total_votes=int(fields.get("total_votes") or 0),
        polls_count=int(fields.get("polls_count") or 0),
        start_timestamp=start,
        end_timestamp=end,
        token_requirement=token,
        token_amount=int(fields.get("required_amount") or 0) if token else None,
        has_whitelist=bool(fields.get("has_whitelist")) or whitelist_count > 0,
        is_cancelled=is_cancelled,
    )


class SuiLedgerClient:
    def __init__(
        self,
        rpc_url: str = SUI_RPC_URL,
        package_id: str = PACKAGE_ID,
        timeout: float = REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        time_fn=time.time,
    ):
        self.rpc_url = rpc_url
        self.package_id = package_id
        self.timeout = timeout
        self._client = client
        self._time_fn = time_fn
        self._ids = itertools.count(1)

    def _now_ms(self) -> int:
        return int(self._time_fn() * 1000)

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.rpc_url, json=payload)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.rpc_url, json=payload)

    async def rpc(self, method: str, params: List[Any]) -> Any:
        """
        One JSON-RPC round trip. httpx transport errors propagate unchanged;
        RPC-level errors become LedgerError.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = await self._post(payload)
        resp.raise_for_status()
        body = resp.json()
        if body.get("error"):
            err = body["error"]
            raise LedgerError(f"{method}: {err.get('message', err)}", code=err.get("code"))
        return body.get("result")

    # ----------- reads -----------

    async def get_vote(self, vote_id: str) -> Optional[VoteRecord]:
        if not vote_id:
            return None
        result = await self.rpc("sui_getObject", [vote_id, {"showContent": True, "showType": True}])
        data = (result or {}).get("data")
        if not data:
            logger.warning("vote object %s not found", vote_id)
            return None
        return parse_vote_object(vote_id, data, self._now_ms(), self.package_id)

    async def query_events(
        self,
        event_filter: Dict[str, Any],
        cursor: Optional[Dict[str, Any]] = None,
        limit: int = 50,
        descending: bool = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        result = await self.rpc("suix_queryEvents", [event_filter, cursor, limit, descending]) or {}
        return result.get("data") or [], result.get("nextCursor") or cursor

    async def has_voted(self, address: str, vote_id: str, max_pages: int = 5, page_size: int = 50) -> bool:
        cast_type = event_type("VoteCast", self.package_id)
        cursor = None
        for _ in range(max_pages):
            events, cursor = await self.query_events({"Sender": address}, cursor=cursor, limit=page_size, descending=True)
            for event in events:
                parsed = event.get("parsedJson") or {}
                if event.get("type") == cast_type and parsed.get("vote_id") == vote_id:
                    return True
            if len(events) < page_size:
                break
        return False

    async def get_coin_decimals(self, coin_type: str) -> int:
        result = await self.rpc("suix_getCoinMetadata", [coin_type])
        if not result or result.get("decimals") is None:
            if coin_type.endswith("::sui::SUI"):
                return SUI_DECIMALS
            raise LedgerError(f"no coin metadata for {coin_type}")
        return int(result["decimals"])

    async def check_token_balance(self, owner: str, coin_type: str, required_units: int) -> Tuple[bool, int]:
        result = await self.rpc("suix_getBalance", [owner, coin_type]) or {}
        balance = int(result.get("totalBalance") or 0)
        return balance >= required_units, balance

    # ----------- execution -----------

    async def execute(self, call: MoveCall, signer: Signer) -> Dict[str, Any]:
        """
        Build the transaction bytes on the fullnode, have the signer sign them,
        and execute with effects and object changes in the answer.
        """
        built = await self.rpc(
            "unsafe_moveCall",
            [
                signer.address,
                call.package,
                call.module,
                call.function,
                call.type_arguments,
                call.arguments,
                None,
                str(call.gas_budget),
            ],
        )
        tx_bytes = (built or {}).get("txBytes")
        if not tx_bytes:
            raise LedgerError(f"unsafe_moveCall returned no txBytes for {call.target}")

        signature = await signer.sign(tx_bytes)
        logger.info("submitting %s from %s", call.target, signer.address)
        return await self.rpc(
            "sui_executeTransactionBlock",
            [
                tx_bytes,
                [signature],
                {"showEffects": True, "showObjectChanges": True, "showEvents": True},
                "WaitForLocalExecution",
            ],
        )
