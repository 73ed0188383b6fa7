"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from automation_bridge.bridge.models import ExecutionStatus, TriggerSource


class ExecuteRequest(BaseModel):
    input_data: dict[str, Any] = Field(default_factory=dict)
    trigger_source: TriggerSource = TriggerSource.MANUAL


class DispatchResponse(BaseModel):
    execution_id: str
    remote_execution_id: str | None = None
    error: str | None = None


class ReconcileResponse(BaseModel):
    execution_id: str
    status: ExecutionStatus
    output_data: Any = None
    error: str | None = None


class SyncResponse(BaseModel):
    success: bool
    synced: int
    added: int
    updated: int
    removed: int
    errors: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    connected: bool
    instance_url: str | None = None
    error: str | None = None


class EventMappingRequest(BaseModel):
    event_type: str
    workflow_id: str
    payload_transform: dict[str, str] | None = None
    active: bool = True


class EventTriggerResponse(BaseModel):
    triggered: int
    execution_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
