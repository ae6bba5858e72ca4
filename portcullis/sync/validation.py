"""
Sync request validation.

The inbound body is a closed schema: unknown top-level or destination-config
fields are rejected. Every violated field is reported at once.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from portcullis.core.errors import ValidationError

DEFAULT_MODE = "stream"
DEFAULT_BATCH_SIZE = 10000


class DestinationOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: Literal["stream", "batch"] = DEFAULT_MODE
    batchSize: int = Field(default=DEFAULT_BATCH_SIZE, gt=0, strict=True)


class DestinationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., strict=True)
    credentials: Dict[str, Any] = Field(..., min_length=1)
    options: DestinationOptions = Field(default_factory=DestinationOptions)


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    organization: str = Field(..., min_length=1, strict=True)
    internal_warehouse: str = Field(..., min_length=1, strict=True)
    link_type: str = Field(..., min_length=1, strict=True)
    internal_credentials: Dict[str, Any] = Field(..., min_length=1)
    destination_config: DestinationConfig

    @property
    def normalized_link_type(self) -> str:
        return self.link_type.lower()

    def job_fields(self) -> Dict[str, Any]:
        """Fields persisted on the SyncJob, defaults resolved."""
        return {
            "organization": self.organization,
            "internal_warehouse": self.internal_warehouse,
            "link_type": self.normalized_link_type,
            "internal_credentials": dict(self.internal_credentials),
            "destination_config": self.destination_config.model_dump(),
        }


def _issues(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors(include_url=False)
    ]


class RequestValidator:
    """Pure function object: raw body in, SyncRequest or ValidationError out."""

    def validate(self, raw: Any) -> SyncRequest:
        try:
            return SyncRequest.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(_issues(exc)) from exc
