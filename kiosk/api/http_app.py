from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
from collections.abc import Awaitable, Callable
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kiosk.api.auth import LOGIN_ROLES, Role, authenticate, optional_role
from kiosk.api.handlers.auth import login_handler
from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.handlers.downloads import print_download_handler
from kiosk.api.handlers.events import (
    archive_event_handler,
    capture_settings_handler,
    create_event_handler,
    delete_event_handler,
    get_event_handler,
    list_events_handler,
    update_event_handler,
)
from kiosk.api.handlers.presets import create_preset_handler, delete_preset_handler, list_presets_handler
from kiosk.api.handlers.processor import heartbeat_handler, processor_status_handler
from kiosk.api.handlers.queue import (
    approved_queue_handler,
    mark_failed_handler,
    report_images_handler,
    stale_scan_handler,
    verify_status_handler,
)
from kiosk.api.handlers.submissions import (
    add_to_queue_handler,
    append_log_handler,
    approve_handler,
    create_submission_handler,
    delete_submission_handler,
    get_submission_handler,
    get_thumbnail_handler,
    list_submissions_handler,
    regenerate_handler,
    reject_handler,
    retry_handler,
    set_status_handler,
    update_submission_handler,
)
from kiosk.api.schemas import (
    ApiHealthResponse,
    ArchiveEventRequest,
    AppendLogRequest,
    CaptureSettingsModel,
    CreateEventRequest,
    CreateSubmissionRequest,
    CreateSubmissionResponse,
    ErrorResponse,
    EventResponse,
    FailSubmissionRequest,
    HealthResponse,
    HeartbeatResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PresetRequest,
    PresetResponse,
    ProcessorStatusResponse,
    ReadyResponse,
    ReportImagesRequest,
    ReportImagesResponse,
    StaleScanResponse,
    StatusUpdateRequest,
    SubmissionListResponse,
    SubmissionResponse,
    ThumbnailResponse,
    UpdateEventRequest,
    UpdateSubmissionRequest,
    VerifyStatusResponse,
    WorkerMetrics,
)
from kiosk.domain.error_taxonomy import classify_domain_error, http_status_for, public_message
from kiosk.domain.errors import DomainError
from kiosk.workers.loop import WatchdogLoop
from kiosk.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)

DEPS_UNAVAILABLE = "api dependencies are not available"

_AUTH_ERRORS = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
_READ_ERRORS = {**_AUTH_ERRORS, 404: {"model": ErrorResponse}}
_WRITE_ERRORS = {**_READ_ERRORS, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def _validation_message(exc: RequestValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid request"


def build_app(
    role: str,
    run_id: str,
    worker_loop: WatchdogLoop | None = None,
    worker_runtime_settings: WorkerRuntimeSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    worker_state: WorkerRuntimeState | None = None
    worker_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker_task, worker_state
        del app
        stop_event: asyncio.Event | None = None

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        if worker_loop is not None:
            settings = worker_runtime_settings or worker_runtime_settings_from_env()
            worker_state = WorkerRuntimeState()
            stop_event = asyncio.Event()
            worker_task = asyncio.create_task(
                run_worker_until_stopped(
                    worker_loop=worker_loop,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    settings=settings,
                    logger=logger,
                    state=worker_state,
                )
            )

        yield

        if stop_event is not None and worker_task is not None:
            stop_event.set()
            await worker_task

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="event-kiosk", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        code = classify_domain_error(exc)
        status_code = http_status_for(code)
        if status_code >= 500:
            logger.error(
                "request failed",
                exc_info=exc,
                extra={"role": role, "run_id": run_id, "path": request.url.path, "code": code},
            )
        return JSONResponse(status_code=status_code, content={"detail": public_message(exc, code), "code": code})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        del request
        return JSONResponse(status_code=400, content={"detail": _validation_message(exc), "code": "validation_error"})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled request error",
            exc_info=exc,
            extra={"role": role, "run_id": run_id, "path": request.url.path},
        )
        return JSONResponse(status_code=500, content={"detail": "internal error", "code": "internal_error"})

    def _require_deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail=DEPS_UNAVAILABLE)
        return api_deps

    def _authorizer(*allowed: Role) -> Callable[..., Role]:
        allowed_roles = frozenset(allowed)

        def dependency(
            authorization: str | None = Header(default=None),
            processor_secret: str | None = Query(default=None, alias="processorSecret"),
        ) -> Role:
            deps = _require_deps()
            return authenticate(
                deps.auth,
                authorization=authorization,
                processor_secret=processor_secret,
                allowed=allowed_roles,
            )

        return dependency

    require_admin = _authorizer(Role.ADMIN)
    require_processor = _authorizer(Role.PROCESSOR)
    require_admin_or_processor = _authorizer(Role.ADMIN, Role.PROCESSOR)
    require_kiosk_or_admin = _authorizer(Role.CAPTURE, Role.ADMIN)

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role, mode=_mode())

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        worker_loop_enabled = worker_loop is not None
        worker_loop_ready = True
        metrics = WorkerMetrics(
            started=False,
            stopped=False,
            ticks_total=0,
            resets_total=0,
            idle_ticks_total=0,
            errors_total=0,
        )
        if worker_loop_enabled:
            worker_loop_ready = (
                worker_state is not None
                and worker_state.started
                and worker_task is not None
                and not worker_task.done()
            )
            if worker_state is not None:
                metrics = WorkerMetrics(
                    started=worker_state.started,
                    stopped=worker_state.stopped,
                    ticks_total=worker_state.ticks_total,
                    resets_total=worker_state.resets_total,
                    idle_ticks_total=worker_state.idle_ticks_total,
                    errors_total=worker_state.errors_total,
                )

        return ReadyResponse(
            status="ready",
            role=role,
            mode=_mode(),
            worker_loop_enabled=worker_loop_enabled,
            worker_loop_ready=worker_loop_ready,
            worker_metrics=metrics,
        )

    def _mode() -> str:
        return "serving" if api_deps is not None else "degraded"

    @app.get("/api/health", response_model=ApiHealthResponse, tags=["System"])
    async def api_health() -> ApiHealthResponse:
        return ApiHealthResponse()

    @app.post(
        "/api/auth/login/{login_role}",
        response_model=LoginResponse,
        responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Auth"],
    )
    async def login(login_role: str, request: LoginRequest) -> LoginResponse:
        deps = _require_deps()
        if login_role not in {item.value for item in LOGIN_ROLES}:
            raise HTTPException(status_code=404, detail="Unknown login role")
        return await login_handler(role=Role(login_role), password=request.password, api_deps=deps)

    # Submissions. Fixed paths are registered before /{submission_id}.

    @app.post(
        "/api/submissions",
        response_model=CreateSubmissionResponse,
        status_code=201,
        responses=_WRITE_ERRORS,
        tags=["Submissions"],
    )
    async def create_submission(
        request: CreateSubmissionRequest,
        caller: Role = Depends(require_kiosk_or_admin),
    ) -> CreateSubmissionResponse:
        del caller
        return await create_submission_handler(request=request, api_deps=_require_deps())

    @app.get("/api/submissions", response_model=SubmissionListResponse, responses=_READ_ERRORS, tags=["Submissions"])
    async def list_submissions(
        event_id: str | None = Query(default=None, alias="eventId"),
        status: str | None = Query(default=None),
        limit: int = Query(default=50, ge=1),
        skip: int = Query(default=0, ge=0),
        caller: Role = Depends(require_admin),
    ) -> SubmissionListResponse:
        del caller
        return await list_submissions_handler(
            event_id=event_id,
            status=status,
            limit=limit,
            skip=skip,
            api_deps=_require_deps(),
        )

    @app.get("/api/submissions/stuck", response_model=StaleScanResponse, responses=_AUTH_ERRORS, tags=["Queue"])
    async def stale_scan(caller: Role = Depends(require_processor)) -> StaleScanResponse:
        del caller
        return await stale_scan_handler(api_deps=_require_deps())

    @app.get(
        "/api/submissions/approved/queue",
        response_model=list[SubmissionResponse],
        responses=_AUTH_ERRORS,
        tags=["Queue"],
    )
    async def approved_queue(caller: Role = Depends(require_processor)) -> list[SubmissionResponse]:
        del caller
        return await approved_queue_handler(api_deps=_require_deps())

    @app.get(
        "/api/submissions/{submission_id}",
        response_model=SubmissionResponse,
        responses=_READ_ERRORS,
        tags=["Submissions"],
    )
    async def get_submission(submission_id: str, caller: Role = Depends(require_admin)) -> SubmissionResponse:
        del caller
        return await get_submission_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.get(
        "/api/submissions/{submission_id}/thumbnail",
        response_model=ThumbnailResponse,
        responses=_READ_ERRORS,
        tags=["Submissions"],
    )
    async def get_thumbnail(submission_id: str, caller: Role = Depends(require_admin)) -> ThumbnailResponse:
        del caller
        return await get_thumbnail_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.patch(
        "/api/submissions/{submission_id}",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Submissions"],
    )
    async def update_submission(
        submission_id: str,
        request: UpdateSubmissionRequest,
        caller: Role = Depends(require_admin_or_processor),
    ) -> SubmissionResponse:
        del caller
        return await update_submission_handler(submission_id=submission_id, request=request, api_deps=_require_deps())

    @app.patch(
        "/api/submissions/{submission_id}/status",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Submissions"],
    )
    async def set_status(
        submission_id: str,
        request: StatusUpdateRequest,
        caller: Role = Depends(require_admin_or_processor),
    ) -> SubmissionResponse:
        return await set_status_handler(
            submission_id=submission_id,
            status=request.status,
            role=caller,
            api_deps=_require_deps(),
        )

    @app.patch(
        "/api/submissions/{submission_id}/approve",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Review"],
    )
    async def approve(submission_id: str, caller: Role = Depends(require_admin)) -> SubmissionResponse:
        del caller
        return await approve_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.patch(
        "/api/submissions/{submission_id}/reject",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Review"],
    )
    async def reject(submission_id: str, caller: Role = Depends(require_admin)) -> SubmissionResponse:
        del caller
        return await reject_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.post(
        "/api/submissions/{submission_id}/logs",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Queue"],
    )
    async def append_log(
        submission_id: str,
        request: AppendLogRequest,
        caller: Role = Depends(require_processor),
    ) -> SubmissionResponse:
        del caller
        return await append_log_handler(submission_id=submission_id, request=request, api_deps=_require_deps())

    @app.post(
        "/api/submissions/{submission_id}/regenerate",
        response_model=SubmissionResponse,
        status_code=201,
        responses=_WRITE_ERRORS,
        tags=["Review"],
    )
    async def regenerate(submission_id: str, caller: Role = Depends(require_admin)) -> SubmissionResponse:
        del caller
        return await regenerate_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.post(
        "/api/submissions/{submission_id}/add-to-queue",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Review"],
    )
    async def add_to_queue(submission_id: str, caller: Role = Depends(require_admin)) -> SubmissionResponse:
        del caller
        return await add_to_queue_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.post(
        "/api/submissions/{submission_id}/retry",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Review"],
    )
    async def retry(submission_id: str, caller: Role = Depends(require_admin)) -> SubmissionResponse:
        del caller
        return await retry_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.post(
        "/api/submissions/{submission_id}/verify-status",
        response_model=VerifyStatusResponse,
        responses=_WRITE_ERRORS,
        tags=["Review"],
    )
    async def verify_status(submission_id: str, caller: Role = Depends(require_admin)) -> VerifyStatusResponse:
        del caller
        return await verify_status_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.patch(
        "/api/submissions/{submission_id}/fail",
        response_model=SubmissionResponse,
        responses=_WRITE_ERRORS,
        tags=["Queue"],
    )
    async def mark_failed(
        submission_id: str,
        request: FailSubmissionRequest,
        caller: Role = Depends(require_processor),
    ) -> SubmissionResponse:
        del caller
        return await mark_failed_handler(submission_id=submission_id, request=request, api_deps=_require_deps())

    @app.patch(
        "/api/submissions/{submission_id}/images",
        response_model=ReportImagesResponse,
        responses=_WRITE_ERRORS,
        tags=["Queue"],
    )
    async def report_images(
        submission_id: str,
        request: ReportImagesRequest,
        caller: Role = Depends(require_processor),
    ) -> ReportImagesResponse:
        del caller
        return await report_images_handler(submission_id=submission_id, request=request, api_deps=_require_deps())

    @app.delete(
        "/api/submissions/{submission_id}",
        response_model=MessageResponse,
        responses=_READ_ERRORS,
        tags=["Submissions"],
    )
    async def delete_submission(submission_id: str, caller: Role = Depends(require_admin)) -> MessageResponse:
        del caller
        return await delete_submission_handler(submission_id=submission_id, api_deps=_require_deps())

    @app.get("/api/download", response_class=Response, responses=_WRITE_ERRORS, tags=["Downloads"])
    async def print_download(
        url: str | None = Query(default=None),
        filename: str | None = Query(default=None),
        caller: Role = Depends(require_admin),
    ) -> Response:
        del caller
        return await print_download_handler(url=url, filename=filename, api_deps=_require_deps())

    @app.get("/api/presets", response_model=list[PresetResponse], responses=_AUTH_ERRORS, tags=["Presets"])
    async def list_presets(caller: Role = Depends(require_admin)) -> list[PresetResponse]:
        del caller
        return await list_presets_handler(api_deps=_require_deps())

    @app.post(
        "/api/presets",
        response_model=PresetResponse,
        status_code=201,
        responses=_WRITE_ERRORS,
        tags=["Presets"],
    )
    async def create_preset(request: PresetRequest, caller: Role = Depends(require_admin)) -> PresetResponse:
        del caller
        return await create_preset_handler(request=request, api_deps=_require_deps())

    @app.delete("/api/presets/{preset_id}", response_model=MessageResponse, responses=_READ_ERRORS, tags=["Presets"])
    async def delete_preset(preset_id: str, caller: Role = Depends(require_admin)) -> MessageResponse:
        del caller
        return await delete_preset_handler(preset_id=preset_id, api_deps=_require_deps())

    @app.get("/api/events", response_model=list[EventResponse], responses={503: {"model": ErrorResponse}}, tags=["Events"])
    async def list_events(
        include_archived: bool = Query(default=False, alias="includeArchived"),
        authorization: str | None = Header(default=None),
    ) -> list[EventResponse]:
        deps = _require_deps()
        # Archived events are an operator view; anonymous callers never see them.
        is_admin = optional_role(deps.auth, authorization=authorization) == Role.ADMIN
        return await list_events_handler(include_archived=include_archived and is_admin, api_deps=deps)

    @app.get(
        "/api/events/{event_id}",
        response_model=EventResponse,
        responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Events"],
    )
    async def get_event(event_id: str) -> EventResponse:
        return await get_event_handler(event_id=event_id, api_deps=_require_deps())

    @app.post("/api/events", response_model=EventResponse, status_code=201, responses=_WRITE_ERRORS, tags=["Events"])
    async def create_event(request: CreateEventRequest, caller: Role = Depends(require_admin)) -> EventResponse:
        del caller
        return await create_event_handler(request=request, api_deps=_require_deps())

    @app.put("/api/events/{event_id}", response_model=EventResponse, responses=_WRITE_ERRORS, tags=["Events"])
    async def update_event(
        event_id: str,
        request: UpdateEventRequest,
        caller: Role = Depends(require_admin),
    ) -> EventResponse:
        del caller
        return await update_event_handler(event_id=event_id, request=request, api_deps=_require_deps())

    @app.patch("/api/events/{event_id}/archive", response_model=EventResponse, responses=_WRITE_ERRORS, tags=["Events"])
    async def archive_event(
        event_id: str,
        request: ArchiveEventRequest | None = None,
        caller: Role = Depends(require_admin),
    ) -> EventResponse:
        del caller
        is_archived = request.is_archived if request is not None else True
        return await archive_event_handler(event_id=event_id, is_archived=is_archived, api_deps=_require_deps())

    @app.delete("/api/events/{event_id}", response_model=MessageResponse, responses=_WRITE_ERRORS, tags=["Events"])
    async def delete_event(event_id: str, caller: Role = Depends(require_admin)) -> MessageResponse:
        del caller
        return await delete_event_handler(event_id=event_id, api_deps=_require_deps())

    @app.get(
        "/api/capture-settings",
        response_model=CaptureSettingsModel,
        responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Events"],
    )
    async def capture_settings(event_id: str | None = Query(default=None, alias="eventId")) -> CaptureSettingsModel:
        return await capture_settings_handler(event_id=event_id, api_deps=_require_deps())

    @app.post("/api/processor/heartbeat", response_model=HeartbeatResponse, responses=_AUTH_ERRORS, tags=["Processor"])
    async def heartbeat(caller: Role = Depends(require_processor)) -> HeartbeatResponse:
        del caller
        return await heartbeat_handler(api_deps=_require_deps())

    @app.get(
        "/api/processor/status",
        response_model=ProcessorStatusResponse,
        responses=_AUTH_ERRORS,
        tags=["Processor"],
    )
    async def processor_status(caller: Role = Depends(require_admin)) -> ProcessorStatusResponse:
        del caller
        return await processor_status_handler(api_deps=_require_deps())

    return app
