from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
import json
from typing import Any

import asyncpg

from kiosk.domain.errors import (
    DomainConflictError,
    DomainInvariantError,
    DomainNotFoundError,
    DuplicateNameError,
)
from kiosk.domain.ids import new_event_public_id, new_preset_public_id, new_submission_public_id
from kiosk.domain.models import (
    BrandingSettings,
    CaptureInputMode,
    CaptureSettings,
    EventSnapshot,
    EventSummary,
    EventUpdate,
    GeneratedImage,
    LogLevel,
    NewEvent,
    NewSubmission,
    PresetSnapshot,
    ProcessingLogEntry,
    PromptChoice,
    SubmissionListQuery,
    SubmissionPage,
    SubmissionSnapshot,
    SubmissionStatus,
    SubmissionUpdate,
)
from kiosk.repositories.sql_loader import load_sql

SQL_CREATE_SUBMISSION = load_sql("create_submission.sql")
SQL_GET_SUBMISSION = load_sql("get_submission.sql")
SQL_GET_SUBMISSION_STATUS = load_sql("get_submission_status.sql")
SQL_DELETE_SUBMISSION = load_sql("delete_submission.sql")
SQL_NEXT_APPROVED = load_sql("next_approved.sql")
SQL_LIST_STALE_PROCESSING = load_sql("list_stale_processing.sql")
SQL_COUNT_SUBMISSIONS = load_sql("count_submissions.sql")
SQL_COUNT_PHOTO_REFERENCES = load_sql("count_photo_references.sql")
SQL_CREATE_EVENT = load_sql("create_event.sql")
SQL_GET_EVENT = load_sql("get_event.sql")
SQL_LIST_EVENTS = load_sql("list_events.sql")
SQL_DELETE_EVENT = load_sql("delete_event.sql")
SQL_CREATE_PRESET = load_sql("create_preset.sql")
SQL_LIST_PRESETS = load_sql("list_presets.sql")
SQL_DELETE_PRESET = load_sql("delete_preset.sql")
SQL_UPSERT_HEARTBEAT = load_sql("upsert_heartbeat.sql")
SQL_GET_HEARTBEAT = load_sql("get_heartbeat.sql")

SUBMISSION_COLUMNS = (
    "public_id, event_public_id, name, email, phone, photo_url, prompt, custom_text, status, "
    "approved_at, processing_started_at, processed_at, retry_count, failure_reason, "
    "generated_images_json, processing_logs_json, created_at"
)
EVENT_COLUMNS = (
    "public_id, name, description, event_date, is_archived, capture_settings_json, branding_json, "
    "created_at, updated_at"
)

# SubmissionUpdate field name -> column.
_SUBMISSION_UPDATE_COLUMNS: dict[str, str] = {
    "approved_at": "approved_at",
    "processing_started_at": "processing_started_at",
    "processed_at": "processed_at",
    "retry_count": "retry_count",
    "failure_reason": "failure_reason",
    "generated_images": "generated_images_json",
    "photo_url": "photo_url",
    "prompt": "prompt",
    "custom_text": "custom_text",
}


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None

    async def startup(self) -> None:
        async def _init_connection(conn: Any) -> None:
            for type_name in ("json", "jsonb"):
                await conn.set_type_codec(
                    type_name,
                    encoder=json.dumps,
                    decoder=json.loads,
                    schema="pg_catalog",
                )

        self.pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=1,
            max_size=5,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresSubmissionRepository:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def create_submission(self, *, record: NewSubmission) -> SubmissionSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            for _ in range(5):
                try:
                    row = await conn.fetchrow(
                        SQL_CREATE_SUBMISSION,
                        new_submission_public_id(),
                        record.event_id,
                        record.name,
                        record.email,
                        record.phone,
                        record.photo_url,
                        record.prompt,
                        record.custom_text,
                        str(record.status),
                        record.approved_at,
                        _logs_to_json(record.processing_logs),
                    )
                except asyncpg.UniqueViolationError:
                    continue
                if row is None:
                    raise DomainInvariantError("failed to create submission")
                return _submission_from_row(row)
        raise DomainInvariantError("failed to allocate unique submission public id")

    async def get_submission(self, *, submission_id: str) -> SubmissionSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_SUBMISSION, submission_id)
        if row is None:
            return None
        return _submission_from_row(row)

    async def list_submissions(self, *, query: SubmissionListQuery) -> SubmissionPage:
        where_parts: list[str] = []
        args: list[object] = []
        if query.event_id is not None:
            args.append(query.event_id)
            where_parts.append(f"event_public_id = ${len(args)}")
        if query.statuses:
            args.append([str(status) for status in query.statuses])
            where_parts.append(f"status = ANY(${len(args)}::text[])")
        where_sql = f"WHERE {' AND '.join(where_parts)}" if where_parts else ""

        count_sql = f"SELECT COUNT(*) FROM submissions {where_sql}"
        page_args = [*args, query.limit, query.offset]
        page_sql = (
            f"SELECT {SUBMISSION_COLUMNS} FROM submissions {where_sql} "
            f"ORDER BY created_at DESC, id DESC "
            f"LIMIT ${len(page_args) - 1} OFFSET ${len(page_args)}"
        )

        pool = self._pool()
        async with pool.acquire() as conn:
            total = await conn.fetchval(count_sql, *args)
            rows = await conn.fetch(page_sql, *page_args)
        return SubmissionPage(
            items=[_submission_from_row(row) for row in rows],
            total=int(total or 0),
            limit=query.limit,
            offset=query.offset,
        )

    async def update_submission(
        self,
        *,
        submission_id: str,
        update: SubmissionUpdate,
        expected_status: SubmissionStatus | None = None,
    ) -> SubmissionSnapshot:
        set_parts = ["updated_at = NOW()"]
        args: list[object] = []
        if update.status is not None:
            args.append(str(update.status))
            set_parts.append(f"status = ${len(args)}")
        for name, value in update.changes.items():
            if name == "generated_images":
                value = _images_to_json(value or ())  # type: ignore[arg-type]
            args.append(value)
            set_parts.append(f"{_SUBMISSION_UPDATE_COLUMNS[name]} = ${len(args)}")
        if update.append_logs:
            args.append(_logs_to_json(update.append_logs))
            set_parts.append(f"processing_logs_json = processing_logs_json || ${len(args)}::jsonb")

        args.append(submission_id)
        where_sql = f"public_id = ${len(args)}"
        if expected_status is not None:
            args.append(str(expected_status))
            where_sql += f" AND status = ${len(args)}"

        sql = f"UPDATE submissions SET {', '.join(set_parts)} WHERE {where_sql} RETURNING {SUBMISSION_COLUMNS}"
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(sql, *args)
            if row is None:
                current = await conn.fetchval(SQL_GET_SUBMISSION_STATUS, submission_id)
                if current is None:
                    raise DomainNotFoundError("Submission not found")
                raise DomainConflictError(
                    f"submission status changed concurrently: expected {expected_status}, found {current}"
                )
        return _submission_from_row(row)

    async def delete_submission(self, *, submission_id: str) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            deleted = await conn.fetchval(SQL_DELETE_SUBMISSION, submission_id)
        return deleted is not None

    async def next_approved(self) -> SubmissionSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_NEXT_APPROVED)
        if row is None:
            return None
        return _submission_from_row(row)

    async def list_stale_processing(self, *, started_before: datetime) -> list[SubmissionSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_STALE_PROCESSING, started_before)
        return [_submission_from_row(row) for row in rows]

    async def count_submissions(
        self,
        *,
        event_id: str,
        status: SubmissionStatus | None = None,
    ) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            count = await conn.fetchval(
                SQL_COUNT_SUBMISSIONS,
                event_id,
                str(status) if status is not None else None,
            )
        return int(count or 0)

    async def count_photo_references(self, *, photo_url: str) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            count = await conn.fetchval(SQL_COUNT_PHOTO_REFERENCES, photo_url)
        return int(count or 0)

    async def create_event(self, *, record: NewEvent) -> EventSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            for _ in range(5):
                try:
                    row = await conn.fetchrow(
                        SQL_CREATE_EVENT,
                        new_event_public_id(),
                        record.name,
                        record.description,
                        record.event_date,
                        _capture_settings_to_json(record.capture_settings),
                        asdict(record.branding),
                    )
                except asyncpg.UniqueViolationError:
                    continue
                if row is None:
                    raise DomainInvariantError("failed to create event")
                return _event_from_row(row)
        raise DomainInvariantError("failed to allocate unique event public id")

    async def get_event(self, *, event_id: str) -> EventSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_EVENT, event_id)
        if row is None:
            return None
        return _event_from_row(row)

    async def list_events(self, *, include_archived: bool) -> list[EventSummary]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_EVENTS, include_archived)
        return [
            EventSummary(
                event=_event_from_row(row),
                pending_count=int(row["pending_count"] or 0),
                total_count=int(row["total_count"] or 0),
            )
            for row in rows
        ]

    async def update_event(self, *, event_id: str, update: EventUpdate) -> EventSnapshot | None:
        set_parts = ["updated_at = NOW()"]
        args: list[object] = []
        for column, value in (
            ("name", update.name),
            ("description", update.description),
            ("event_date", update.event_date),
            (
                "capture_settings_json",
                _capture_settings_to_json(update.capture_settings) if update.capture_settings is not None else None,
            ),
            ("branding_json", asdict(update.branding) if update.branding is not None else None),
            ("is_archived", update.is_archived),
        ):
            if value is None:
                continue
            args.append(value)
            set_parts.append(f"{column} = ${len(args)}")
        args.append(event_id)
        sql = f"UPDATE events SET {', '.join(set_parts)} WHERE public_id = ${len(args)} RETURNING {EVENT_COLUMNS}"

        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(sql, *args)
        if row is None:
            return None
        return _event_from_row(row)

    async def delete_event(self, *, event_id: str) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            deleted = await conn.fetchval(SQL_DELETE_EVENT, event_id)
        return deleted is not None

    async def create_preset(self, *, name: str, prompt: str, custom_text: str) -> PresetSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            for _ in range(5):
                try:
                    row = await conn.fetchrow(SQL_CREATE_PRESET, new_preset_public_id(), name, prompt, custom_text)
                except asyncpg.UniqueViolationError as exc:
                    if getattr(exc, "constraint_name", None) == "presets_name_key":
                        raise DuplicateNameError("Preset name already exists") from exc
                    continue
                if row is None:
                    raise DomainInvariantError("failed to create preset")
                return _preset_from_row(row)
        raise DomainInvariantError("failed to allocate unique preset public id")

    async def list_presets(self) -> list[PresetSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_PRESETS)
        return [_preset_from_row(row) for row in rows]

    async def delete_preset(self, *, preset_id: str) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            deleted = await conn.fetchval(SQL_DELETE_PRESET, preset_id)
        return deleted is not None

    async def record_processor_heartbeat(self, *, at: datetime) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_UPSERT_HEARTBEAT, at)

    async def get_processor_heartbeat(self) -> datetime | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(SQL_GET_HEARTBEAT)
        return value if isinstance(value, datetime) else None


def _submission_from_row(row: Any) -> SubmissionSnapshot:
    return SubmissionSnapshot(
        submission_id=row["public_id"],
        event_id=row["event_public_id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        photo_url=row["photo_url"],
        prompt=row["prompt"],
        custom_text=row["custom_text"],
        status=SubmissionStatus(row["status"]),
        approved_at=row["approved_at"],
        processing_started_at=row["processing_started_at"],
        processed_at=row["processed_at"],
        retry_count=row["retry_count"],
        failure_reason=row["failure_reason"],
        generated_images=_images_from_json(row["generated_images_json"]),
        processing_logs=_logs_from_json(row["processing_logs_json"]),
        created_at=row["created_at"],
    )


def _event_from_row(row: Any) -> EventSnapshot:
    return EventSnapshot(
        event_id=row["public_id"],
        name=row["name"],
        description=row["description"],
        event_date=row["event_date"],
        is_archived=row["is_archived"],
        capture_settings=_capture_settings_from_json(_json_object(row["capture_settings_json"])),
        branding=_branding_from_json(_json_object(row["branding_json"])),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _preset_from_row(row: Any) -> PresetSnapshot:
    return PresetSnapshot(
        preset_id=row["public_id"],
        name=row["name"],
        prompt=row["prompt"],
        custom_text=row["custom_text"],
    )


def _images_to_json(images: tuple[GeneratedImage, ...]) -> list[dict[str, str]]:
    return [
        {"url": image.url, "filename": image.filename, "created_at": image.created_at.isoformat()}
        for image in images
    ]


def _images_from_json(value: object) -> tuple[GeneratedImage, ...]:
    return tuple(
        GeneratedImage(
            url=str(item.get("url", "")),
            filename=str(item.get("filename", "")),
            created_at=datetime.fromisoformat(str(item["created_at"])),
        )
        for item in _json_list(value)
    )


def _logs_to_json(entries: tuple[ProcessingLogEntry, ...]) -> list[dict[str, str]]:
    return [
        {"timestamp": entry.timestamp.isoformat(), "message": entry.message, "level": str(entry.level)}
        for entry in entries
    ]


def _logs_from_json(value: object) -> tuple[ProcessingLogEntry, ...]:
    return tuple(
        ProcessingLogEntry(
            timestamp=datetime.fromisoformat(str(item["timestamp"])),
            message=str(item.get("message", "")),
            level=LogLevel(item.get("level", LogLevel.INFO)),
        )
        for item in _json_list(value)
    )


def _capture_settings_to_json(settings: CaptureSettings) -> dict[str, object]:
    payload = asdict(settings)
    payload["prompt_mode"] = str(settings.prompt_mode)
    payload["custom_text_mode"] = str(settings.custom_text_mode)
    return payload


def _capture_settings_from_json(value: dict[str, object]) -> CaptureSettings:
    defaults = CaptureSettings()
    return CaptureSettings(
        prompt_mode=CaptureInputMode(value.get("prompt_mode", defaults.prompt_mode)),
        locked_prompt_title=str(value.get("locked_prompt_title", "")),
        locked_prompt_value=str(value.get("locked_prompt_value", "")),
        prompt_presets=_choices(value.get("prompt_presets")),
        custom_text_mode=CaptureInputMode(value.get("custom_text_mode", defaults.custom_text_mode)),
        locked_custom_text_value=str(value.get("locked_custom_text_value", "")),
        custom_text_presets=_choices(value.get("custom_text_presets")),
    )


def _branding_from_json(value: dict[str, object]) -> BrandingSettings:
    known = set(BrandingSettings.__dataclass_fields__)
    return BrandingSettings(**{key: item for key, item in value.items() if key in known})  # type: ignore[arg-type]


def _choices(value: object) -> tuple[PromptChoice, ...]:
    return tuple(
        PromptChoice(name=str(item.get("name", "")), value=str(item.get("value", "")))
        for item in _json_list(value)
    )


def _json_object(value: object) -> dict[str, object]:
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        parsed = json.loads(value)
        if isinstance(parsed, dict):
            return parsed
    return {}


def _json_list(value: object) -> list[dict[str, Any]]:
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]
