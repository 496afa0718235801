"""
Error taxonomy.

Exceptions abort the operation that raised them. MappingFault and
WeightWarning are plain records returned next to a successful result.
"""
from typing import Dict, Optional, Union

from pydantic import BaseModel


class SuiVoteError(Exception):
    retry_safe = False


class InvalidVoteParams(SuiVoteError):
    pass


class UploadError(SuiVoteError):
    def __init__(self, message: str, status: Optional[int] = None, local_id: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.local_id = local_id

    @property
    def transient(self) -> bool:
        return self.status is None or self.status >= 500


class AssemblyAbort(SuiVoteError):
    """Vote creation stopped before anything was submitted."""
    retry_safe = True

    def __init__(self, message: str, failed_assets: Optional[Dict[str, Exception]] = None):
        super().__init__(message)
        self.failed_assets = failed_assets or {}


class SubmissionError(SuiVoteError):
    USER_DECLINED = "user_declined"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NETWORK = "network"
    WALLET = "wallet"
    UNKNOWN = "unknown"

    def __init__(self, message: str, kind: str = UNKNOWN):
        super().__init__(message)
        self.kind = kind

    @property
    def retry_safe(self) -> bool:  # type: ignore[override]
        return self.kind == self.NETWORK


class LedgerError(SuiVoteError):
    """JSON-RPC error or malformed answer from the fullnode."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class AmbiguousSuccess(SuiVoteError):
    """The transaction executed but the created vote could not be found in its effects."""

    def __init__(self, message: str, digest: str):
        super().__init__(message)
        self.digest = digest


# substring -> kind, checked in order against the lowercased error text
_SUBMISSION_PATTERNS = (
    (("rejection", "rejected", "cancelled", "canceled", "declined"), SubmissionError.USER_DECLINED),
    (("insufficient",), SubmissionError.INSUFFICIENT_FUNDS),
    (("network", "timeout", "timed out", "connection"), SubmissionError.NETWORK),
    (("wallet",), SubmissionError.WALLET),
)


def classify_submission_error(text: str) -> str:
    lowered = (text or "").lower()
    for needles, kind in _SUBMISSION_PATTERNS:
        if any(needle in lowered for needle in needles):
            return kind
    return SubmissionError.UNKNOWN


# ----------- non-fatal faults -----------

class MappingFault(BaseModel):
    kind: str  # "unknown_option" | "index_out_of_range"
    value: Union[int, str]
    message: str


class WeightWarning(BaseModel):
    position: int
    address: str
    reason: str
