"""
Pydantic models for crmpilot API responses.

Agent endpoints take raw webhook bodies, so only responses are modelled here.
"""

from typing import List

from pydantic import (
    BaseModel,
    Field,
)

from crmpilot.core.schema import ResultStyle


# ---------------------------------------------------------------------------
# Pydantic response schema
# ---------------------------------------------------------------------------
class AgentInfo(BaseModel):
    """One configured agent."""

    name: str
    description: str = ""
    result_style: ResultStyle


class VerificationFailure(BaseModel):
    success: bool = False
    error: str


class JobResponse(BaseModel):
    """Summary of a lead-reply job run."""

    message: str
    replied: List[str] = Field(default_factory=list)
    escalated: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
