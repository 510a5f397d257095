from typing import Optional
from pydantic import BaseModel


class SyncOutcome(BaseModel):
    """
    Result of one engine operation.

    Remote failures never raise out of the engine; they come back here with
    ok=False and a message/code the caller decides how to present.
    """

    ok: bool = True
    error: Optional[str] = None
    code: Optional[str] = None  # transport|timeout|http_<status>|payload|local
    panel_id: Optional[str] = None
    pushed: int = 0
    merged: int = 0
    skipped: int = 0
    reset: int = 0
