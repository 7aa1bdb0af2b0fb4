"""Error tracking data models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class CapturedError(BaseModel):
    """Failure payload recorded by the host runtime."""

    code: int
    message: str
    file: str
    line: int
    previous: Optional["CapturedError"] = None


class ErrorRecord(BaseModel):
    """Structured record persisted to the fatal log for one terminal event."""

    model_config = ConfigDict(frozen=True)

    category: str
    code: str
    file: str
    line: int
    request_uri: str
    message: str
