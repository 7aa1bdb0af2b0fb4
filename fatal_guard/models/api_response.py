"""API response data models."""

from pydantic import BaseModel


class FailureStatus(BaseModel):
    """Status block of the generic failure response."""

    succeed: int = 0
    error_code: str = "500"
    error_desc: str = "The Server Has Gone Away~"


class FailureResponse(BaseModel):
    """Body returned to the caller after an uncaught or fatal error."""

    status: FailureStatus = FailureStatus()
