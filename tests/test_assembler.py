"""Tests for vote assembly and execution."""

import asyncio
from decimal import Decimal

import httpx
import pytest

from suivote.assembler import TransactionAssembler, find_created_vote, parse_params, serialize_poll, validate_params
from suivote.errors import AmbiguousSuccess, AssemblyAbort, InvalidVoteParams, SubmissionError, UploadError
from suivote.ledger import SuiLedgerClient, close_vote_call
from suivote.media import MediaUploadOrchestrator
from suivote.models import (
    BlobRef,
    MediaAsset,
    OptionDraft,
    PaymentConfig,
    PollDraft,
    TokenGating,
    VoteCreationParams,
    WhitelistConfig,
    WhitelistEntry,
)

PKG = "0x" + "11" * 32
ADMIN = "0x" + "22" * 32
VOTE_ID = "0x" + "33" * 32
ADDR_A = "0x" + "aa" * 32
ADDR_B = "0x" + "bb" * 32
NOW = 1_000.0  # seconds


class _MockUploader:
    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    async def upload(self, asset):
        self.calls.append(asset.local_id)
        if asset.local_id in self.failing:
            raise UploadError("store unavailable", status=503, local_id=asset.local_id)
        return BlobRef(blob_reference=f"blob-{asset.local_id}", storage_object_id="0xstore")


class _MockLedger:
    def __init__(self, result=None, error=None, decimals=6):
        self.result = result
        self.error = error
        self.decimals = decimals
        self.executed = []

    async def get_coin_decimals(self, coin_type):
        return self.decimals

    async def execute(self, call, signer):
        self.executed.append(call)
        if self.error is not None:
            raise self.error
        return self.result


class _MockSigner:
    address = "0x" + "99" * 32

    async def sign(self, tx_bytes):
        return "sig"


def _success(object_type=None, object_id=VOTE_ID):
    object_type = object_type or f"{PKG}::voting::Vote"
    return {
        "digest": "DIGEST1",
        "effects": {"status": {"status": "success"}},
        "objectChanges": [
            {"type": "mutated", "objectType": f"{PKG}::voting::VoteAdmin", "objectId": ADMIN},
            {"type": "created", "objectType": f"{PKG}::voting::PollOption", "objectId": "0xopt"},
            {"type": "created", "objectType": object_type, "objectId": object_id},
        ],
    }


def _make_assembler(ledger=None, uploader=None):
    orchestrator = MediaUploadOrchestrator(uploader or _MockUploader())
    return TransactionAssembler(
        orchestrator,
        ledger or _MockLedger(result=_success()),
        _MockSigner(),
        package_id=PKG,
        admin_id=ADMIN,
        clock_id="0x6",
        gas_budget=1000,
        time_fn=lambda: NOW,
    )


def _params(**overrides):
    values = dict(
        title="Lunch",
        description="Where to eat",
        polls=[
            PollDraft(
                title="Place",
                options=[
                    OptionDraft(stable_id="p1", text="Pizza", media_ref="img1"),
                    OptionDraft(stable_id="p2", text="Sushi"),
                ],
            ),
            PollDraft(
                title="Drinks",
                is_multi_select=True,
                max_selections=2,
                options=[
                    OptionDraft(stable_id="d1", text="Water", media_ref="img1"),
                    OptionDraft(stable_id="d2", text="Juice", media_ref="img2"),
                    OptionDraft(stable_id="d3", text="Soda"),
                ],
            ),
        ],
        start_timestamp=2_000_000,
        end_timestamp=3_000_000,
        media={
            "img1": MediaAsset(local_id="img1", raw_bytes=b"one", content_type="image/png"),
            "img2": MediaAsset(local_id="img2", raw_bytes=b"two", content_type="image/jpeg"),
        },
    )
    values.update(overrides)
    return VoteCreationParams(**values)


def test_build_produces_one_flattened_call():
    uploader = _MockUploader()
    assembled = asyncio.run(_make_assembler(uploader=uploader).build(_params()))
    call = assembled.call
    args = call.arguments

    assert call.target == f"{PKG}::voting::create_complete_vote"
    assert sorted(uploader.calls) == ["img1", "img2"]
    assert args[0] == ADMIN
    assert args[1:5] == ["Lunch", "Where to eat", "2000000", "3000000"]
    assert args[10] == ["Place", "Drinks"]
    assert args[12] == [False, True]
    assert args[13] == ["1", "2"]
    assert args[15] == ["2", "3"]
    assert args[16] == ["Pizza", "Sushi", "Water", "Juice", "Soda"]
    assert args[17] == ["sui://blob/blob-img1", "", "sui://blob/blob-img1", "sui://blob/blob-img2", ""]
    assert args[-1] == "0x6"
    assert assembled.report.index_maps == [{"p1": 1, "p2": 2}, {"d1": 1, "d2": 2, "d3": 3}]


def test_upload_failure_aborts_before_anything_is_built():
    ledger = _MockLedger(result=_success())
    assembler = _make_assembler(ledger=ledger, uploader=_MockUploader(failing={"img2"}))

    with pytest.raises(AssemblyAbort) as excinfo:
        asyncio.run(assembler.create_vote(_params()))
    assert "img2" in excinfo.value.failed_assets
    assert ledger.executed == []


def test_token_gating_and_payment_units():
    params = _params(
        token_gating=TokenGating(
            required_token_type="0xabc::usdc::USDC", required_amount=Decimal("2.5"), is_weighted=True, weight_per_vote=Decimal("1")
        ),
        payment=PaymentConfig(amount=Decimal("0.1")),
    )
    args = asyncio.run(_make_assembler(ledger=_MockLedger(decimals=6)).build(params)).call.arguments

    assert args[5] == "0xabc::usdc::USDC"
    assert args[6] == "2500000"
    assert args[7] == "100000000"
    assert args[18] is True
    assert args[19] == "1000000"


def test_whitelist_weights_are_scaled_and_deviation_reported():
    params = _params(
        whitelist=WhitelistConfig(
            enabled=True,
            weighting_enabled=True,
            entries=[WhitelistEntry(address=ADDR_A, weight_percent=60), WhitelistEntry(address=ADDR_B, weight_percent=30)],
        )
    )
    assembler = _make_assembler()
    assembler.weight_scale = 1000
    assembled = asyncio.run(assembler.build(params))

    assert assembled.call.arguments[20] == [ADDR_A, ADDR_B]
    assert assembled.call.arguments[21] == ["600", "300"]
    assert assembled.report.weight_deviation == pytest.approx(-10)


def test_unweighted_whitelist_sends_empty_weights():
    params = _params(whitelist=WhitelistConfig(enabled=True, entries=[WhitelistEntry(address=ADDR_A)]))
    args = asyncio.run(_make_assembler().build(params)).call.arguments
    assert args[20] == [ADDR_A]
    assert args[21] == []


def test_validation_rejects_before_upload():
    uploader = _MockUploader()
    bad = _params(polls=[PollDraft(title="Only one", options=[OptionDraft(stable_id="x", text="X")])])

    with pytest.raises(InvalidVoteParams):
        asyncio.run(_make_assembler(uploader=uploader).build(bad))
    assert uploader.calls == []


def test_validation_rules():
    now_ms = int(NOW * 1000)
    validate_params(_params(), now_ms)

    with pytest.raises(InvalidVoteParams):
        validate_params(_params(end_timestamp=1_500_000, start_timestamp=1_000), now_ms + 1_000_000)
    with pytest.raises(InvalidVoteParams):
        validate_params(_params(start_timestamp=3_000_000, end_timestamp=2_000_000), now_ms)
    with pytest.raises(InvalidVoteParams):
        validate_params(_params(token_gating=TokenGating(required_token_type="0x2::sui::SUI")), now_ms)
    with pytest.raises(InvalidVoteParams):
        dupes = [WhitelistEntry(address=ADDR_A), WhitelistEntry(address=ADDR_A)]
        validate_params(_params(whitelist=WhitelistConfig(enabled=True, entries=dupes)), now_ms)


def test_weighted_voting_without_token_is_rejected():
    now_ms = int(NOW * 1000)
    with pytest.raises(InvalidVoteParams) as excinfo:
        validate_params(_params(token_gating=TokenGating(is_weighted=True)), now_ms)
    assert "weighted voting requires a token" in str(excinfo.value)


def test_multi_select_max_is_clamped_when_serialized():
    poll = PollDraft(
        title="T",
        is_multi_select=True,
        max_selections=9,
        options=[OptionDraft(stable_id=s, text=s) for s in "abc"],
    )
    assert serialize_poll(poll)["max_selections"] == 2
    assert serialize_poll(poll.model_copy(update={"is_multi_select": False}))["max_selections"] == 1


def test_create_vote_returns_vote_found_by_type():
    created = asyncio.run(_make_assembler().create_vote(_params()))
    assert created.receipt.vote_id == VOTE_ID
    assert created.receipt.digest == "DIGEST1"


def test_vote_type_match_is_exact():
    changes = [{"type": "created", "objectType": f"{PKG}::voting::VoteAdmin", "objectId": "0xadmin"}]
    assert find_created_vote(changes, PKG) is None
    generic = [{"type": "created", "objectType": f"{PKG}::voting::Vote<0x2::sui::SUI>", "objectId": "0xg"}]
    assert find_created_vote(generic, PKG) == "0xg"


def test_missing_vote_object_is_ambiguous_success():
    result = _success(object_type=f"{PKG}::other::Thing")
    with pytest.raises(AmbiguousSuccess) as excinfo:
        asyncio.run(_make_assembler(ledger=_MockLedger(result=result)).create_vote(_params()))
    assert excinfo.value.digest == "DIGEST1"
    assert excinfo.value.retry_safe is False


@pytest.mark.parametrize(
    "message, kind, retry_safe",
    [
        ("User rejected the request", SubmissionError.USER_DECLINED, False),
        ("InsufficientCoinBalance: insufficient gas", SubmissionError.INSUFFICIENT_FUNDS, False),
        ("Request timeout", SubmissionError.NETWORK, True),
        ("Wallet not connected", SubmissionError.WALLET, False),
        ("MoveAbort in voting::create_complete_vote", SubmissionError.UNKNOWN, False),
    ],
)
def test_submission_errors_are_classified(message, kind, retry_safe):
    assembler = _make_assembler(ledger=_MockLedger(error=RuntimeError(message)))

    with pytest.raises(SubmissionError) as excinfo:
        asyncio.run(assembler.create_vote(_params()))
    assert excinfo.value.kind == kind
    assert excinfo.value.retry_safe is retry_safe
    assert str(excinfo.value) == message


def test_transport_error_is_network():
    assembler = _make_assembler(ledger=_MockLedger(error=httpx.ConnectError("refused")))
    with pytest.raises(SubmissionError) as excinfo:
        asyncio.run(assembler.create_vote(_params()))
    assert excinfo.value.kind == SubmissionError.NETWORK


def _http_ledger(status_code):
    transport = httpx.MockTransport(lambda request: httpx.Response(status_code, text="upstream unavailable"))
    client = httpx.AsyncClient(transport=transport)
    return SuiLedgerClient(rpc_url="http://fullnode.test", package_id=PKG, client=client)


def test_server_error_from_node_is_network():
    assembler = _make_assembler(ledger=_http_ledger(502))
    with pytest.raises(SubmissionError) as excinfo:
        asyncio.run(assembler.submit(close_vote_call(VOTE_ID, package_id=PKG)))
    assert excinfo.value.kind == SubmissionError.NETWORK
    assert excinfo.value.retry_safe is True
    assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)


def test_client_error_from_node_is_not_retry_safe():
    assembler = _make_assembler(ledger=_http_ledger(400))
    with pytest.raises(SubmissionError) as excinfo:
        asyncio.run(assembler.submit(close_vote_call(VOTE_ID, package_id=PKG)))
    assert excinfo.value.kind == SubmissionError.UNKNOWN
    assert excinfo.value.retry_safe is False


def test_failed_effects_are_submission_errors():
    result = {"digest": "D", "effects": {"status": {"status": "failure", "error": "InsufficientGas"}}}
    with pytest.raises(SubmissionError) as excinfo:
        asyncio.run(_make_assembler(ledger=_MockLedger(result=result)).create_vote(_params()))
    assert excinfo.value.kind == SubmissionError.INSUFFICIENT_FUNDS


def test_cast_vote_call_maps_ids_and_reports_faults():
    assembler = _make_assembler()
    poll = _params().polls[1]

    call, faults = assembler.cast_vote_call(VOTE_ID, 2, poll, ["d3", "zz", "d1"], "0xcoin")
    assert call.function == "cast_vote"
    assert call.arguments[2] == "2"
    assert call.arguments[3] == ["3", "1"]
    assert [f.value for f in faults] == ["zz"]

    with pytest.raises(InvalidVoteParams):
        assembler.cast_vote_call(VOTE_ID, 2, poll, ["nope"], "0xcoin")


def test_cast_multiple_votes_call():
    assembler = _make_assembler()
    polls = _params().polls

    call, faults = assembler.cast_multiple_votes_call(VOTE_ID, polls, {2: ["d2"], 1: ["p1"], 5: ["x"]}, "0xcoin")
    assert call.arguments[2] == ["1", "2"]
    assert call.arguments[3] == [["1"], ["2"]]
    assert faults[0].kind == "index_out_of_range"


def test_parse_params_from_plain_data():
    raw = {
        "title": "Form vote",
        "polls": [{"title": "Q", "options": [{"stable_id": "a", "text": "A"}, {"stable_id": "b", "text": "B"}]}],
        "start_timestamp": 2_000_000,
        "end_timestamp": 3_000_000,
        "whitelist": {"enabled": True, "entries": [{"address": ADDR_A.upper().replace("0X", "0x")}]},
    }
    params = parse_params(raw)
    assert params.whitelist.entries[0].address == ADDR_A

    raw["whitelist"]["entries"] = [{"address": "not-an-address"}]
    with pytest.raises(InvalidVoteParams) as excinfo:
        parse_params(raw)
    assert "whitelist" in str(excinfo.value)
