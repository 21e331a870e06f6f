"""
Job payloads — one tagged variant per pipeline stage.

Wire shape (JSON):
  {"kind": "fetch",    "user": {...}}
  {"kind": "analysis", "user": {...}, "email": {...}}
  {"kind": "response", "user": {...}, "email": {...}, "analysis": {...}}
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core.errors import MalformedPayloadError
from models.schemas import AnalysisResult, Email, User


class FetchPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["fetch"] = "fetch"
    user: User


class AnalysisPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["analysis"] = "analysis"
    user: User
    email: Email


class ResponsePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["response"] = "response"
    user: User
    email: Email
    analysis: AnalysisResult


JobPayload = Annotated[
    Union[FetchPayload, AnalysisPayload, ResponsePayload],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def encode_payload(payload: BaseModel) -> dict[str, Any]:
    return payload.model_dump(mode="json")


def decode_payload(data: Any, expected: type[BaseModel] = None):
    """
    Decode a raw payload dict into its stage variant.

    Raises MalformedPayloadError for unknown kinds, missing fields, or a
    variant other than ``expected`` when one is given.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    if not isinstance(data, dict):
        raise MalformedPayloadError(f"payload must be an object, got {type(data).__name__}")

    kind = str(data.get("kind", ""))
    try:
        payload = _payload_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedPayloadError(
            f"invalid {kind or 'untagged'} payload: {e.error_count()} error(s)", kind=kind,
        ) from e

    if expected is not None and not isinstance(payload, expected):
        raise MalformedPayloadError(
            f"expected {expected.__name__}, got {type(payload).__name__}", kind=kind,
        )
    return payload
