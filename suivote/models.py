import re
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
BLOB_URL_PREFIX = "sui://blob/"


class VoteStatus(str, Enum):
    PENDING = "pending"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    VOTED = "voted"
    CLOSED = "closed"


class AssetStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"


# ----------- media -----------

class MediaAsset(BaseModel):
    """
    A media file attached to an option during authoring.
    blob_reference is set once, by the orchestrator, after a successful upload.
    """
    model_config = ConfigDict(frozen=True)

    local_id: str
    raw_bytes: bytes = Field(repr=False)
    content_type: str = "application/octet-stream"
    status: AssetStatus = AssetStatus.PENDING
    blob_reference: Optional[str] = None
    storage_object_id: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.raw_bytes)


class BlobRef(BaseModel):
    blob_reference: str
    storage_object_id: str = ""

    @property
    def media_url(self) -> str:
        return f"{BLOB_URL_PREFIX}{self.blob_reference}"


class MediaResolution(BaseModel):
    refs: Dict[str, BlobRef] = Field(default_factory=dict)
    assets: Dict[str, MediaAsset] = Field(default_factory=dict)
    uploaded: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)


# ----------- drafts -----------

class OptionDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    stable_id: str
    text: str
    media_ref: Optional[str] = None  # MediaAsset.local_id
    media_url: Optional[str] = None  # resolved reference, or a pre-existing URL


class PollDraft(BaseModel):
    """
    One poll of a vote. Option order is the positional index contract:
    options[i] is index i + 1 on the ledger.
    """
    model_config = ConfigDict(frozen=True)

    title: str
    description: str = ""
    is_multi_select: bool = False
    max_selections: int = 1
    is_required: bool = True
    options: List[OptionDraft] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_stable_ids(self) -> "PollDraft":
        seen = set()
        for option in self.options:
            if option.stable_id in seen:
                raise ValueError(f"duplicate option id {option.stable_id!r} in poll {self.title!r}")
            seen.add(option.stable_id)
        return self


class WhitelistEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    weight_percent: Optional[float] = None

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        value = value.strip()
        if not ADDRESS_RE.match(value):
            raise ValueError("address must be 0x followed by 64 hex characters")
        return value.lower()

    @field_validator("weight_percent")
    @classmethod
    def _check_weight(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not (0 < value <= 100):
            raise ValueError("weight must be in (0, 100]")
        return value


class TokenGating(BaseModel):
    model_config = ConfigDict(frozen=True)

    required_token_type: Optional[str] = None
    required_amount: Optional[Decimal] = None
    is_weighted: bool = False
    weight_per_vote: Optional[Decimal] = None


class PaymentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal = Decimal("0")  # in SUI


class WhitelistConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    weighting_enabled: bool = False
    entries: List[WhitelistEntry] = Field(default_factory=list)


class VoteCreationParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    description: str = ""
    polls: List[PollDraft]
    start_timestamp: int  # epoch millis
    end_timestamp: int  # epoch millis
    token_gating: TokenGating = Field(default_factory=TokenGating)
    payment: PaymentConfig = Field(default_factory=PaymentConfig)
    whitelist: WhitelistConfig = Field(default_factory=WhitelistConfig)
    media: Dict[str, MediaAsset] = Field(default_factory=dict)  # by local_id
    require_all_polls: bool = True
    show_live_stats: bool = False


# ----------- ledger -----------

class MoveCall(BaseModel):
    """A single programmable-transaction call into a Move entry point."""
    package: str
    module: str
    function: str
    arguments: List[Any] = Field(default_factory=list)
    type_arguments: List[str] = Field(default_factory=list)
    gas_budget: int

    @property
    def target(self) -> str:
        return f"{self.package}::{self.module}::{self.function}"


class VoteReceipt(BaseModel):
    digest: str
    vote_id: Optional[str] = None
    object_changes: List[Dict[str, Any]] = Field(default_factory=list)
    effects: Dict[str, Any] = Field(default_factory=dict)


# ----------- reconciliation -----------

class VoteRecord(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    status: VoteStatus
    total_votes: int = 0
    polls_count: int = 0
    start_timestamp: int = 0
    end_timestamp: int = 0
    token_requirement: Optional[str] = None
    token_amount: Optional[int] = None
    has_whitelist: bool = False
    is_whitelisted: Optional[bool] = None
    creator: Optional[str] = None
    is_cancelled: bool = False


class VoteUpdateEvent(BaseModel):
    """
    Partial VoteRecord pushed by the subscription.
    Fields left as None are "not present" and never overwrite the record.
    """
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[VoteStatus] = None
    total_votes: Optional[int] = None
    polls_count: Optional[int] = None
    start_timestamp: Optional[int] = None
    end_timestamp: Optional[int] = None
    token_requirement: Optional[str] = None
    token_amount: Optional[int] = None
    has_whitelist: Optional[bool] = None
    is_whitelisted: Optional[bool] = None

    def field_updates(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id", "status"}, exclude_none=True)

    @classmethod
    def from_record(cls, record: VoteRecord) -> "VoteUpdateEvent":
        return cls(**record.model_dump(exclude={"creator", "is_cancelled"}))
