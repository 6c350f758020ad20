from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from wafscope.apps.api.deps import get_notes_writer
from wafscope.apps.api.openapi import NOTES_ERROR_RESPONSES
from wafscope.apps.api.response import SuccessEnvelope, success_response
from wafscope.domain.notes import NoteFields
from wafscope.services.notes_writer import NotesWriteService


router = APIRouter(prefix="/wafnotes", tags=["notes"], responses=NOTES_ERROR_RESPONSES)
# The legacy notes front end posts to /api/wafnotes/save.
legacy_router = APIRouter(prefix="/api/wafnotes", include_in_schema=False)


class NoteTarget(BaseModel):
    # Accepts snake_case and the camelCase names sent by the legacy front end.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    entity_type: str | None = None
    waf_policy_name: str | None = None
    custom_rule_name: str | None = None
    match_condition_index: int | None = None
    match_value: str | None = None
    managed_rule_set_type: str | None = None
    managed_rule_set_version: str | None = None
    rule_group_name: str | None = None
    rule_id: str | None = None
    tenant_id: str | None = None
    subscription_id: str | None = None
    resource_group_name: str | None = None

    @field_validator("match_condition_index", mode="before")
    @classmethod
    def _blank_index(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_fields(self) -> NoteFields:
        return NoteFields(
            policy_name=self.waf_policy_name or "",
            custom_rule_name=self.custom_rule_name or "",
            match_condition_index=self.match_condition_index,
            match_value=self.match_value or "",
            rule_set_type=self.managed_rule_set_type or "",
            rule_set_version=self.managed_rule_set_version or "",
            rule_group_name=self.rule_group_name or "",
            rule_id=self.rule_id or "",
            tenant_id=self.tenant_id or "",
            subscription_id=self.subscription_id or "",
            resource_group_name=self.resource_group_name or "",
        )


class SaveNoteRequest(NoteTarget):
    notes_content: str | None = None


class SaveNoteResponse(BaseModel):
    message: str
    partition_key: str
    row_key: str
    notes_content: str


class NoteResponse(BaseModel):
    found: bool
    partition_key: str
    row_key: str
    entity_type: str | None = None
    notes_content: str | None = None
    updated_at: datetime | None = None


async def save_note(
    payload: SaveNoteRequest,
    request: Request,
    writer: NotesWriteService = Depends(get_notes_writer),
) -> dict:
    result = await writer.save_note(payload.entity_type, payload.to_fields(), payload.notes_content)
    if not result.ok:
        status_code = 400 if result.client_error else 502
        raise HTTPException(
            status_code=status_code,
            detail={"code": result.error_code, "message": result.message},
        )
    assert result.key is not None
    data = SaveNoteResponse(
        message=result.message,
        partition_key=result.key.partition_key,
        row_key=result.key.row_key,
        notes_content=result.content or "",
    )
    return success_response(request=request, data=data)


router.add_api_route(
    "/save",
    save_note,
    methods=["POST"],
    response_model=SuccessEnvelope[SaveNoteResponse] | SaveNoteResponse,
)
legacy_router.add_api_route(
    "/save",
    save_note,
    methods=["POST"],
    response_model=SaveNoteResponse,
)


@router.get("", response_model=SuccessEnvelope[NoteResponse] | NoteResponse)
async def get_note(
    request: Request,
    entity_type: str | None = None,
    waf_policy_name: str | None = None,
    custom_rule_name: str | None = None,
    match_condition_index: int | None = None,
    match_value: str | None = None,
    managed_rule_set_type: str | None = None,
    managed_rule_set_version: str | None = None,
    rule_group_name: str | None = None,
    rule_id: str | None = None,
    writer: NotesWriteService = Depends(get_notes_writer),
) -> dict:
    # Key and store errors are mapped by the app-level exception handlers.
    fields = NoteTarget(
        waf_policy_name=waf_policy_name,
        custom_rule_name=custom_rule_name,
        match_condition_index=match_condition_index,
        match_value=match_value,
        managed_rule_set_type=managed_rule_set_type,
        managed_rule_set_version=managed_rule_set_version,
        rule_group_name=rule_group_name,
        rule_id=rule_id,
    ).to_fields()
    key = writer.key_for(entity_type, fields)
    lookup = await writer.get_note(entity_type, fields)
    record = lookup.record
    data = NoteResponse(found=lookup.found, partition_key=key.partition_key, row_key=key.row_key)
    if record is not None:
        data = NoteResponse(
            found=True,
            partition_key=record.partition_key,
            row_key=record.row_key,
            entity_type=record.entity_type.value,
            notes_content=record.content,
            updated_at=record.updated_at,
        )
    return success_response(request=request, data=data)
