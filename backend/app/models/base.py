"""
Base Models for the Ingestion Client API

Request bodies reject unknown fields and strip surrounding whitespace, so a
typo such as {"domian": "rust"} fails with 422 instead of starting a session
for an empty domain. Response bodies ignore extra fields, which lets session
snapshots and stored ingestion records be validated directly.

Usage:
    class CrawlRequest(DomainRequest):
        categories: Optional[list[SourceCategory]] = None

    class StatusResponse(StrictResponse):
        session_id: str
        progress: float
"""

from pydantic import BaseModel, ConfigDict, Field

# Longest domain name accepted by any ingestion route
MAX_DOMAIN_LENGTH = 200


class StrictRequest(BaseModel):
    """Request body: unknown fields raise 422, strings are stripped."""

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
        from_attributes=True,
    )


class DomainRequest(StrictRequest):
    """
    Request body that names a domain.

    Blank domains pass validation here and are rejected by the orchestrator,
    so the error body carries the same input_error kind for every route.
    """

    domain: str = Field(..., max_length=MAX_DOMAIN_LENGTH)


class StrictResponse(BaseModel):
    """Response body built from session snapshots or stored records."""

    model_config = ConfigDict(
        extra="ignore",
        validate_default=True,
        from_attributes=True,
    )
