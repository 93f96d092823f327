"""Common Pydantic models."""
from typing import Optional

from pydantic import BaseModel


class ErrorPayload(BaseModel):
    """Error body returned by the service with 4xx responses."""
    error: str


class HealthStatus(BaseModel):
    """Health check outcome."""
    healthy: bool
    status_code: Optional[int] = None
