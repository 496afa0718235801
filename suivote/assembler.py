# vote creation: validate -> resolve media -> serialize -> one move call -> execute
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel, Field, ValidationError

from .config import ADMIN_ID, CLOCK_OBJECT_ID, GAS_BUDGET, PACKAGE_ID, SUI_DECIMALS, WEIGHT_SCALE
from .errors import (
    AmbiguousSuccess,
    AssemblyAbort,
    InvalidVoteParams,
    LedgerError,
    MappingFault,
    SubmissionError,
    WeightWarning,
    classify_submission_error,
)
from .ledger import cast_multiple_votes_call, cast_vote_call, create_complete_vote_call, is_vote_type
from .media import MediaUploadOrchestrator, rewrite_polls
from .models import MediaResolution, MoveCall, PollDraft, VoteCreationParams, VoteReceipt
from .options import index_map, to_indices
from .tokens import to_fixed_point
from .weights import normalize, screen_whitelist, weight_deviation, weight_total

logger = logging.getLogger(__name__)


class BuildReport(BaseModel):
    mapping_faults: List[MappingFault] = Field(default_factory=list)
    weight_warnings: List[WeightWarning] = Field(default_factory=list)
    weight_total: Optional[float] = None
    weight_deviation: Optional[float] = None
    index_maps: List[Dict[str, int]] = Field(default_factory=list)
    media: MediaResolution = Field(default_factory=MediaResolution)


class AssembledVote(BaseModel):
    call: MoveCall
    polls: List[PollDraft]
    report: BuildReport


class CreatedVote(BaseModel):
    receipt: VoteReceipt
    report: BuildReport


def parse_params(raw: Dict[str, Any]) -> VoteCreationParams:
    """Build params from plain data, e.g. a submitted form."""
    try:
        return VoteCreationParams.model_validate(raw)
    except ValidationError as exc:
        details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise InvalidVoteParams(details) from exc


def validate_params(params: VoteCreationParams, now_ms: int) -> None:
    """Pre-flight checks; nothing is uploaded or submitted when these fail."""
    problems: List[str] = []
    if not params.title.strip():
        problems.append("vote title is required")
    if params.start_timestamp >= params.end_timestamp:
        problems.append("end timestamp must be after start timestamp")
    if params.end_timestamp <= now_ms:
        problems.append("end timestamp must be in the future")
    if not params.polls:
        problems.append("at least one poll is required")

    for position, poll in enumerate(params.polls, start=1):
        label = poll.title.strip() or f"#{position}"
        if not poll.title.strip():
            problems.append(f"poll {label}: title is required")
        if len(poll.options) < 2:
            problems.append(f"poll {label}: at least 2 options are required")
        if any(not option.text.strip() for option in poll.options):
            problems.append(f"poll {label}: all options must have text")
        if poll.is_multi_select and not 1 <= poll.max_selections < len(poll.options):
            problems.append(f"poll {label}: max selections must be between 1 and {len(poll.options) - 1}")

    gating = params.token_gating
    if gating.is_weighted and not gating.required_token_type:
        problems.append("weighted voting requires a token")
    if gating.required_token_type and (gating.required_amount is None or gating.required_amount <= 0):
        problems.append("token amount must be greater than 0 when a token is required")
    if gating.is_weighted and gating.weight_per_vote is not None and gating.weight_per_vote <= 0:
        problems.append("weight per vote must be greater than 0")
    if params.payment.amount < 0:
        problems.append("payment amount cannot be negative")

    if params.whitelist.enabled:
        screen = screen_whitelist(params.whitelist.entries)
        for rejection in screen.rejected:
            problems.append(f"whitelist row {rejection.position} ({rejection.address}): {rejection.reason}")

    if problems:
        raise InvalidVoteParams("; ".join(problems))


def serialize_poll(poll: PollDraft) -> Dict[str, Any]:
    """The option order written here is the index order voters will use."""
    max_selections = min(max(1, poll.max_selections), len(poll.options) - 1) if poll.is_multi_select else 1
    return {
        "title": poll.title,
        "description": poll.description,
        "is_multi_select": poll.is_multi_select,
        "max_selections": max_selections,
        "is_required": poll.is_required,
        "options": [{"text": option.text, "media_reference": option.media_url} for option in poll.options],
    }


def find_created_vote(object_changes: Sequence[Dict[str, Any]], package_id: str = PACKAGE_ID) -> Optional[str]:
    """The vote is picked out by its declared type, not its position."""
    for change in object_changes or []:
        if change.get("type") == "created" and is_vote_type(str(change.get("objectType", "")), package_id):
            return change.get("objectId")
    return None


class TransactionAssembler:
    def __init__(
        self,
        orchestrator: MediaUploadOrchestrator,
        ledger,
        signer,
        package_id: str = PACKAGE_ID,
        admin_id: str = ADMIN_ID,
        clock_id: str = CLOCK_OBJECT_ID,
        gas_budget: int = GAS_BUDGET,
        weight_scale: int = WEIGHT_SCALE,
        time_fn=time.time,
    ):
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.signer = signer
        self.package_id = package_id
        self.admin_id = admin_id
        self.clock_id = clock_id
        self.gas_budget = gas_budget
        self.weight_scale = weight_scale
        self._time_fn = time_fn
        self._attempt_lock = asyncio.Lock()

    def _now_ms(self) -> int:
        return int(self._time_fn() * 1000)

    async def _token_decimals(self, coin_type: str) -> int:
        try:
            return await self.ledger.get_coin_decimals(coin_type)
        except (LedgerError, httpx.HTTPError) as exc:
            raise AssemblyAbort(f"could not resolve decimals for {coin_type}: {exc}") from exc

    async def build(self, params: VoteCreationParams) -> AssembledVote:
        validate_params(params, self._now_ms())
        report = BuildReport()

        # 1. media; AssemblyAbort propagates
        report.media = await self.orchestrator.resolve_all(params.polls, params.media)
        polls = rewrite_polls(params.polls, report.media.refs)

        # 2. polls; option order fixes the index contract from here on
        serialized = [serialize_poll(poll) for poll in polls]
        report.index_maps = [index_map(poll) for poll in polls]

        # 3. gating amounts in ledger units
        gating = params.token_gating
        required_token = gating.required_token_type or ""
        required_amount = 0
        token_weight = 1
        if required_token:
            decimals = await self._token_decimals(required_token)
            required_amount = to_fixed_point(gating.required_amount, decimals)
            if gating.is_weighted:
                token_weight = to_fixed_point(gating.weight_per_vote or 1, decimals)
        payment_amount = to_fixed_point(params.payment.amount, SUI_DECIMALS)

        # 4. whitelist as parallel arrays
        addresses: List[str] = []
        weights: List[int] = []
        if params.whitelist.enabled:
            entries = params.whitelist.entries
            addresses = [entry.address for entry in entries]
            normalized = normalize(entries, params.whitelist.weighting_enabled)
            report.weight_warnings = normalized.warnings
            weights = [round(fraction * self.weight_scale) for fraction in normalized.weights]
            if params.whitelist.weighting_enabled:
                report.weight_total = weight_total(entries)
                report.weight_deviation = weight_deviation(entries)
                if abs(report.weight_deviation) > 1e-9:
                    logger.warning("whitelist weights sum to %.2f%%, not 100%%", report.weight_total)

        # 5. one call, so the ledger creates all of it or none of it
        call = create_complete_vote_call(
            title=params.title,
            description=params.description,
            start_timestamp=params.start_timestamp,
            end_timestamp=params.end_timestamp,
            required_token=required_token,
            required_amount=required_amount,
            payment_amount=payment_amount,
            require_all_polls=params.require_all_polls,
            show_live_stats=params.show_live_stats,
            polls=serialized,
            is_token_weighted=bool(required_token) and gating.is_weighted,
            token_weight=token_weight,
            whitelist_addresses=addresses,
            whitelist_weights=weights,
            package_id=self.package_id,
            admin_id=self.admin_id,
            clock_id=self.clock_id,
            gas_budget=self.gas_budget,
        )
        logger.info(
            "assembled vote %r: %d polls, %d options, %d whitelisted",
            params.title,
            len(serialized),
            sum(len(poll["options"]) for poll in serialized),
            len(addresses),
        )
        return AssembledVote(call=call, polls=polls, report=report)

    async def submit(self, call: MoveCall) -> Dict[str, Any]:
        """
        Execute any voting call. Every failure comes out as a classified
        SubmissionError carrying the underlying text verbatim.
        """
        try:
            result = await self.ledger.execute(call, self.signer)
        except SubmissionError:
            raise
        except httpx.HTTPStatusError as exc:
            message = str(exc) or exc.__class__.__name__
            # a 5xx from the node is an outage, the call never reached the ledger
            kind = SubmissionError.NETWORK if exc.response.status_code >= 500 else classify_submission_error(message)
            raise SubmissionError(message, kind=kind) from exc
        except httpx.TransportError as exc:
            raise SubmissionError(str(exc) or exc.__class__.__name__, kind=SubmissionError.NETWORK) from exc
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            raise SubmissionError(message, kind=classify_submission_error(message)) from exc

        result = result or {}
        status = ((result.get("effects") or {}).get("status") or {})
        if status.get("status") != "success":
            message = status.get("error") or f"transaction {result.get('digest', '')} did not succeed"
            raise SubmissionError(message, kind=classify_submission_error(message))
        return result

    async def execute(self, assembled: AssembledVote) -> VoteReceipt:
        result = await self.submit(assembled.call)
        digest = result.get("digest", "")
        changes = result.get("objectChanges") or []
        vote_id = find_created_vote(changes, self.package_id)
        if not vote_id:
            logger.error("transaction %s succeeded but no Vote object was created in its effects", digest)
            raise AmbiguousSuccess(f"vote created by {digest} could not be located; do not resubmit", digest=digest)
        logger.info("vote %s created (tx %s)", vote_id, digest)
        return VoteReceipt(digest=digest, vote_id=vote_id, object_changes=changes, effects=result.get("effects") or {})

    async def create_vote(self, params: VoteCreationParams) -> CreatedVote:
        # one build/execute cycle in flight at a time
        async with self._attempt_lock:
            assembled = await self.build(params)
            receipt = await self.execute(assembled)
            return CreatedVote(receipt=receipt, report=assembled.report)

    # ----------- casting -----------

    def cast_vote_call(
        self, vote_id: str, poll_index: int, poll: Any, selected_ids: Sequence[str], payment_coin_id: str
    ) -> Tuple[MoveCall, List[MappingFault]]:
        mapped = to_indices(poll, selected_ids)
        if not mapped.values:
            raise InvalidVoteParams(f"no valid option selected for poll {poll_index}")
        call = cast_vote_call(
            vote_id,
            poll_index,
            mapped.values,
            payment_coin_id,
            package_id=self.package_id,
            admin_id=self.admin_id,
            clock_id=self.clock_id,
            gas_budget=self.gas_budget,
        )
        return call, mapped.faults

    def cast_multiple_votes_call(
        self, vote_id: str, polls: Sequence[Any], selections: Dict[int, Sequence[str]], payment_coin_id: str
    ) -> Tuple[MoveCall, List[MappingFault]]:
        """selections maps a 1-based poll index to the stable ids chosen in that poll."""
        poll_indices: List[int] = []
        per_poll: List[List[int]] = []
        faults: List[MappingFault] = []
        for poll_index in sorted(selections):
            if not 1 <= poll_index <= len(polls):
                faults.append(
                    MappingFault(
                        kind="index_out_of_range",
                        value=poll_index,
                        message=f"poll index {poll_index} is outside 1..{len(polls)}",
                    )
                )
                continue
            mapped = to_indices(polls[poll_index - 1], selections[poll_index])
            faults.extend(mapped.faults)
            if mapped.values:
                poll_indices.append(poll_index)
                per_poll.append(mapped.values)
        if not poll_indices:
            raise InvalidVoteParams("no valid selections to submit")
        call = cast_multiple_votes_call(
            vote_id,
            poll_indices,
            per_poll,
            payment_coin_id,
            package_id=self.package_id,
            admin_id=self.admin_id,
            clock_id=self.clock_id,
            gas_budget=self.gas_budget,
        )
        return call, faults
