"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the bridge services. The
caller's tenant comes from the ``X-Organization-Id`` header and the acting
user from ``X-User-Id``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from automation_bridge import __version__
from automation_bridge.bridge.errors import IntegrationNotConfigured, NotFound, RemoteUnavailable
from automation_bridge.bridge.models import EventMapping, ExecutionRecord, WorkflowDefinition
from automation_bridge.bridge.services import BridgeServices, build_services
from automation_bridge.server.config import ServerSettings
from automation_bridge.server.models import (
    DispatchResponse,
    EventMappingRequest,
    EventTriggerResponse,
    ExecuteRequest,
    HealthResponse,
    ReconcileResponse,
    SyncResponse,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: ServerSettings | None = None,
    *,
    services: BridgeServices | None = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    services = services or build_services(settings)
    worker = services.start_worker()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if settings.sweep_enabled:
            worker.start_periodic_sweep(settings.sweep_interval_seconds)
        try:
            yield
        finally:
            worker.shutdown(wait=False)
            services.close()

    app = FastAPI(
        title="Automation Bridge",
        version=__version__,
        description="REST API over the remote workflow mirror, dispatcher and reconciler.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services
    app.state.worker = worker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(IntegrationNotConfigured)
    async def _not_configured(_request: Request, exc: IntegrationNotConfigured) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": "integration not connected", "reason": str(exc)},
        )

    @app.exception_handler(NotFound)
    async def _not_found(_request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RemoteUnavailable)
    async def _remote_unavailable(_request: Request, exc: RemoteUnavailable) -> JSONResponse:
        return JSONResponse(
            status_code=502, content={"detail": str(exc), "retriable": exc.retriable}
        )

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        status = services.client.check_health()
        return HealthResponse(
            status="ok",
            connected=status.connected,
            instance_url=status.instance_url,
            error=status.error,
        )

    @app.post("/api/integrations/{integration_id}/sync", response_model=SyncResponse)
    def sync_integration(
        integration_id: str, x_organization_id: str = Header(...)
    ) -> SyncResponse:
        result = services.synchronizer.sync(integration_id, x_organization_id)
        return SyncResponse(
            success=result.success,
            synced=result.synced,
            added=result.added,
            updated=result.updated,
            removed=result.removed,
            errors=result.errors,
        )

    @app.get("/api/workflows", response_model=list[WorkflowDefinition])
    def list_workflows(x_organization_id: str = Header(...)) -> list[WorkflowDefinition]:
        return services.store.list_workflows(organization_id=x_organization_id)

    @app.get("/api/workflows/{workflow_id}", response_model=WorkflowDefinition)
    def get_workflow(workflow_id: str, x_organization_id: str = Header(...)) -> WorkflowDefinition:
        return services.store.get_workflow(workflow_id, organization_id=x_organization_id)

    @app.post("/api/workflows/{workflow_id}/execute", response_model=DispatchResponse)
    def execute_workflow(
        workflow_id: str,
        req: ExecuteRequest,
        x_organization_id: str = Header(...),
        x_user_id: str = Header(...),
    ) -> DispatchResponse:
        result = services.dispatcher.dispatch(
            workflow_id,
            x_organization_id,
            x_user_id,
            req.input_data,
            req.trigger_source,
        )
        if result.ok:
            worker.submit(result.execution_id)
        return DispatchResponse(
            execution_id=result.execution_id,
            remote_execution_id=result.remote_execution_id,
            error=result.error,
        )

    @app.get("/api/executions/{execution_id}", response_model=ExecutionRecord)
    def get_execution(execution_id: str, x_organization_id: str = Header(...)) -> ExecutionRecord:
        return services.store.get_execution(execution_id, organization_id=x_organization_id)

    @app.post("/api/executions/{execution_id}/reconcile", response_model=ReconcileResponse)
    def reconcile_execution(
        execution_id: str,
        x_organization_id: str = Header(...),
        repoll: bool = False,
        max_attempts: int | None = Query(None, ge=1),
        interval_ms: int | None = Query(None, ge=0),
    ) -> ReconcileResponse:
        if execution_id in worker.in_flight():
            raise HTTPException(status_code=409, detail="Execution is already being reconciled")
        services.store.get_execution(execution_id, organization_id=x_organization_id)
        if services.dispatcher.is_invoking(execution_id):
            raise HTTPException(status_code=409, detail="Execution is still being dispatched")
        result = services.reconciler.reconcile(
            execution_id,
            settings.reconcile_max_attempts if max_attempts is None else max_attempts,
            settings.reconcile_interval_ms if interval_ms is None else interval_ms,
            organization_id=x_organization_id,
            repoll_timeout=repoll,
        )
        return ReconcileResponse(
            execution_id=execution_id,
            status=result.status,
            output_data=result.output_data,
            error=result.error,
        )

    @app.post("/api/event-mappings", response_model=EventMapping)
    def create_event_mapping(
        req: EventMappingRequest, x_organization_id: str = Header(...)
    ) -> EventMapping:
        workflow = services.store.get_workflow(req.workflow_id, organization_id=x_organization_id)
        return services.store.upsert_event_mapping(
            EventMapping(
                id=uuid.uuid4().hex,
                organization_id=x_organization_id,
                event_type=req.event_type,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                payload_transform=req.payload_transform,
                active=req.active,
            )
        )

    @app.post("/api/events/{event_type}", response_model=EventTriggerResponse)
    def trigger_event(
        event_type: str,
        event_data: dict[str, Any],
        x_organization_id: str = Header(...),
    ) -> EventTriggerResponse:
        result = services.events.trigger(x_organization_id, event_type, event_data)
        for dispatched in result.executions:
            if dispatched.ok:
                worker.submit(dispatched.execution_id)
        return EventTriggerResponse(
            triggered=result.triggered,
            execution_ids=[d.execution_id for d in result.executions],
            errors=result.errors,
        )

    return app
