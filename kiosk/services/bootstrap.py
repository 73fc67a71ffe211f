from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging

from kiosk.api.handlers.deps import ApiDeps
from kiosk.clients.imaging import HttpImageFetcher, PillowBrandingCompositor
from kiosk.clients.notifications import HttpNotificationDispatcher
from kiosk.clients.s3 import S3ObjectStore
from kiosk.clients.stub import StubObjectStore
from kiosk.domain.contracts import ObjectStore, SubmissionRepository
from kiosk.domain.use_cases.deps import ServiceDeps
from kiosk.repositories.postgres import AsyncpgPoolManager, PostgresSubmissionRepository
from kiosk.repositories.stub import InMemorySubmissionRepository
from kiosk.roles import RuntimeRole
from kiosk.settings import AppSettings, app_settings_from_env
from kiosk.workers.loop import WatchdogLoop

WATCHDOG_ROLE = "worker-watchdog"

logger = logging.getLogger("runtime")


@dataclass
class RuntimeContainer:
    settings: AppSettings
    repository: SubmissionRepository
    object_store: ObjectStore
    services: ServiceDeps
    api_deps: ApiDeps
    worker_loop: WatchdogLoop | None
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_runtime_container(role: RuntimeRole, settings: AppSettings | None = None) -> RuntimeContainer:
    settings = settings or app_settings_from_env()
    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    repository: SubmissionRepository
    if settings.database_url:
        pool_manager = AsyncpgPoolManager(dsn=settings.database_url)
        repository = PostgresSubmissionRepository(pool_manager=pool_manager)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        logger.warning("DATABASE_URL is not set, using the in-memory repository", extra={"role": role.name})
        repository = InMemorySubmissionRepository()

    object_store: ObjectStore
    if settings.storage.bucket:
        object_store = S3ObjectStore(bucket=settings.storage.bucket, region=settings.storage.region)
    else:
        logger.warning("S3_BUCKET_NAME is not set, images are kept in memory", extra={"role": role.name})
        object_store = StubObjectStore()

    image_fetcher = HttpImageFetcher()
    services = ServiceDeps(
        repository=repository,
        object_store=object_store,
        notifier=HttpNotificationDispatcher(settings=settings.notifications),
        compositor=PillowBrandingCompositor(fetcher=image_fetcher),
        image_fetcher=image_fetcher,
    )
    api_deps = ApiDeps(services=services, auth=settings.auth)

    worker_loop: WatchdogLoop | None = None
    if role.name == WATCHDOG_ROLE:
        worker_loop = WatchdogLoop(role=role.name, deps=services)

    return RuntimeContainer(
        settings=settings,
        repository=repository,
        object_store=object_store,
        services=services,
        api_deps=api_deps,
        worker_loop=worker_loop,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
