"""
Cached accessors for the coaching platform's read paths.

Each accessor binds one backend read (or a small fixed group of reads) to a
base key and a TTL class through cached_read. Write paths elsewhere must call
the matching invalidate_* helper after mutating data covered here; nothing
links writes to invalidation automatically.

Preload and warm helpers fire a batch of accessors concurrently to fill the
cache ahead of need. Their failures are logged and swallowed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any

from fitcache.backend.base import Backend, select
from fitcache.cache.memoize import RequestCoalescer, cached_read
from fitcache.cache.store import CacheStore
from fitcache.logging import get_logger, log_context
from fitcache.types import TTL

logger = get_logger(__name__)


class CacheKeys:
    """Base keys of every cached accessor family."""

    USER_PROFILE = "user_profile"
    PT_PROGRAMS = "pt_programs"
    PT_TEMPLATES = "pt_templates"
    PT_STATS = "pt_stats"
    PT_STATS_SUMMARY = "pt_stats_summary"
    WORKOUT_SESSION = "workout_session"
    EXERCISE_DATA = "exercise_data"
    USER_ENTITLEMENTS = "user_entitlements"
    ACCESS_MATRIX = "access_matrix"
    CLIENT_PROGRAM = "client_program"
    TEMPLATE_EDITING = "template_editing"
    USERS = "users"
    USER_PT_STATS = "user_pt_stats"

    USER_SCOPED = (USER_PROFILE, USER_ENTITLEMENTS, ACCESS_MATRIX, USER_PT_STATS)


ALTERNATIVE_COLUMNS = """
    id, alternative_name, alternative_description, alternative_video_url,
    difficulty_level, equipment_required, muscle_groups
"""

ITEM_COLUMNS = """
    id, exercise_name, sets, reps, seconds, weight_kg, rest_seconds,
    coach_notes, video_url, order_in_day, is_unilateral, reps_per_side, total_reps
"""

PROGRAM_LIST_COLUMNS = """
    id, title_override, start_date, is_active, assigned_to, template_id, inserted_at,
    templates:template_id ( id, title, goal ),
    profiles:assigned_to ( id, email, full_name )
"""

PROGRAM_DETAIL_COLUMNS = f"""
    id, title_override, start_date, is_active, assigned_to, template_id,
    client_days (
        id, title, day_order, note,
        client_items ( {ITEM_COLUMNS}, exercise_alternatives ( {ALTERNATIVE_COLUMNS} ) )
    )
"""

TEMPLATE_DETAIL_COLUMNS = f"""
    id, title, goal, is_active,
    template_days (
        id, day_order, title, note,
        template_items ( {ITEM_COLUMNS}, template_alternatives ( {ALTERNATIVE_COLUMNS} ) )
    )
"""


def _user_params(user_id: str) -> dict[str, str]:
    return {"userId": user_id}


def _session_params(program_id: str, day_id: str) -> dict[str, str]:
    return {"programId": program_id, "dayId": day_id}


def _program_params(program_id: str) -> dict[str, str]:
    return {"programId": program_id}


def _template_params(template_id: str) -> dict[str, str]:
    return {"templateId": template_id}


def decorate_program_rows(rows: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Flatten embedded profile/template titles onto each program row."""
    decorated: list[dict[str, Any]] = []
    for row in rows or []:
        profile = row.get("profiles") or {}
        template = row.get("templates") or {}
        decorated.append({
            **row,
            "user_email": profile.get("email") or "Unknown User",
            "template_title": template.get("title") or "Unknown Template",
        })
    return decorated


class CachedQueries:
    """Cached read accessors, invalidation helpers and preloaders.

    Takes the cache store and backend explicitly; build one per process and
    share it.
    """

    def __init__(
        self,
        cache: CacheStore,
        backend: Backend,
        *,
        coalescer: RequestCoalescer[Any] | None = None,
    ) -> None:
        self.cache = cache
        self.backend = backend

        def bind(base_key: str, ttl: int, fetch: Any, key_params: Any = None) -> Any:
            return cached_read(
                cache,
                base_key=base_key,
                ttl=ttl,
                fetch=fetch,
                key_params=key_params,
                coalescer=coalescer,
            )

        self.user_profile = bind(
            CacheKeys.USER_PROFILE, TTL.LONG, self._fetch_user_profile, _user_params
        )
        self.pt_programs = bind(CacheKeys.PT_PROGRAMS, TTL.MEDIUM, self._fetch_pt_programs)
        self.pt_templates = bind(CacheKeys.PT_TEMPLATES, TTL.LONG, self._fetch_pt_templates)
        self.pt_stats = bind(CacheKeys.PT_STATS, TTL.SHORT, self._fetch_pt_stats)
        self.pt_stats_summary = bind(
            CacheKeys.PT_STATS_SUMMARY, TTL.SHORT, self._fetch_pt_stats_summary
        )
        self.workout_session = bind(
            CacheKeys.WORKOUT_SESSION, TTL.SHORT, self._fetch_workout_session, _session_params
        )
        self.user_entitlements = bind(
            CacheKeys.USER_ENTITLEMENTS, TTL.LONG, self._fetch_user_entitlements, _user_params
        )
        self.access_matrix = bind(
            CacheKeys.ACCESS_MATRIX, TTL.LONG, self._fetch_access_matrix, _user_params
        )
        self.client_program = bind(
            CacheKeys.CLIENT_PROGRAM, TTL.MEDIUM, self._fetch_client_program, _program_params
        )
        self.template_for_editing = bind(
            CacheKeys.TEMPLATE_EDITING,
            TTL.MEDIUM,
            self._fetch_template_for_editing,
            _template_params,
        )
        self.users = bind(CacheKeys.USERS, TTL.LONG, self._fetch_users)
        self.user_pt_stats = bind(
            CacheKeys.USER_PT_STATS, TTL.MEDIUM, self._fetch_user_pt_stats, _user_params
        )

    # Backend reads

    async def _fetch_user_profile(self, user_id: str) -> Any:
        return await self.backend.select(select("profiles").eq("id", user_id).single())

    async def _fetch_pt_programs(self) -> list[dict[str, Any]]:
        rows = await self.backend.select(
            select("client_programs", PROGRAM_LIST_COLUMNS)
            .order_by("inserted_at", ascending=False)
        )
        return decorate_program_rows(rows)

    async def _fetch_pt_templates(self) -> Any:
        return await self.backend.select(
            select("workout_templates").order_by("inserted_at", ascending=False)
        )

    async def _fetch_pt_stats(self) -> Any:
        return await self.backend.rpc("get_pt_system_stats")

    async def _fetch_pt_stats_summary(self) -> dict[str, int]:
        programs = await self.backend.select(
            select("client_programs", "id, is_active, assigned_to")
        )
        sessions = await self.backend.select(
            select("workout_sessions", "id").not_is("ended_at", None)
        )
        programs = programs or []
        return {
            "totalPrograms": len(programs),
            "activePrograms": sum(1 for p in programs if p.get("is_active") is not False),
            "totalClients": len({p["assigned_to"] for p in programs if p.get("assigned_to")}),
            "completedSessions": len(sessions or []),
        }

    async def _fetch_workout_session(self, program_id: str, day_id: str) -> Any:
        return await self.backend.select(
            select(
                "client_items",
                f"{ITEM_COLUMNS}, exercise_alternatives ( {ALTERNATIVE_COLUMNS} )",
            )
            .eq("client_day_id", day_id)
            .order_by("order_in_day")
        )

    async def _fetch_user_entitlements(self, user_id: str) -> Any:
        return await self.backend.select(select("user_entitlements").eq("user_id", user_id))

    async def _fetch_access_matrix(self, user_id: str) -> Any:
        return await self.backend.select(
            select("v_access_matrix").eq("user_id", user_id).maybe_single()
        )

    async def _fetch_client_program(self, program_id: str) -> Any:
        return await self.backend.select(
            select("client_programs", PROGRAM_DETAIL_COLUMNS).eq("id", program_id).single()
        )

    async def _fetch_template_for_editing(self, template_id: str) -> Any:
        return await self.backend.select(
            select("workout_templates", TEMPLATE_DETAIL_COLUMNS).eq("id", template_id).single()
        )

    async def _fetch_users(self) -> Any:
        return await self.backend.select(
            select("profiles", "id, email, full_name").order_by("email")
        )

    async def _fetch_user_pt_stats(self, user_id: str) -> dict[str, Any]:
        programs, sessions, progress = await asyncio.gather(
            self.backend.select(
                select("client_programs", "id, title_override, is_active, start_date")
                .eq("assigned_to", user_id)
            ),
            self.backend.select(
                select(
                    "v_session_summary",
                    "session_id, started_at, ended_at, duration_minutes, avg_rpe",
                )
                .eq("user_id", user_id)
                .order_by("started_at", ascending=False)
                .limit_to(50)
            ),
            self.backend.select(
                select(
                    "userprogress",
                    "completed_at, sets, total_sets, reps, total_reps, total_seconds",
                )
                .eq("user_id", user_id)
                .eq("done", True)
                .order_by("completed_at", ascending=False)
                .limit_to(100)
            ),
        )
        return {
            "programs": programs or [],
            "sessions": sessions or [],
            "progress": progress or [],
        }

    # Writes

    async def batch_update_exercises(self, updates: list[dict[str, Any]]) -> Any:
        """Apply exercise edits in one database transaction, then invalidate.

        Args:
            updates: Rows with ``id`` and any of ``weight_kg``, ``reps``, ``sets``.

        Returns:
            The function's result payload.
        """
        result = await self.backend.rpc("batch_update_exercises", {"updates": updates})
        self.cache.clear_pattern(CacheKeys.WORKOUT_SESSION)
        self.cache.clear_pattern(CacheKeys.CLIENT_PROGRAM)
        return result

    # Invalidation

    def invalidate_pt_cache(self) -> None:
        """Drop every personal-training family (keys containing ``pt_``)."""
        self.cache.clear_pattern("pt_")

    def invalidate_program_cache(self, program_id: str | None = None) -> None:
        """Drop one program's detail (or all of them) and the program lists."""
        if program_id is None:
            self.cache.clear_pattern(CacheKeys.CLIENT_PROGRAM)
        else:
            self.cache.remove(CacheKeys.CLIENT_PROGRAM, _program_params(program_id))
        self.cache.remove(CacheKeys.PT_PROGRAMS)
        self.cache.remove(CacheKeys.PT_STATS_SUMMARY)

    def invalidate_template_cache(self, template_id: str | None = None) -> None:
        """Drop one template's editing view (or all of them) and the template list."""
        if template_id is None:
            self.cache.clear_pattern(CacheKeys.TEMPLATE_EDITING)
        else:
            self.cache.remove(CacheKeys.TEMPLATE_EDITING, _template_params(template_id))
        self.cache.remove(CacheKeys.PT_TEMPLATES)

    def invalidate_user_cache(self, user_id: str) -> None:
        """Drop every user-scoped entry for one user."""
        for base_key in CacheKeys.USER_SCOPED:
            self.cache.remove(base_key, _user_params(user_id))

    def invalidate_workout_cache(self, program_id: str, day_id: str) -> None:
        self.cache.remove(CacheKeys.WORKOUT_SESSION, _session_params(program_id, day_id))

    def invalidate_all_cache(self) -> None:
        self.cache.clear()

    # Preloading

    async def _run_best_effort(self, label: str, reads: list[Awaitable[Any]]) -> bool:
        results = await asyncio.gather(*reads, return_exceptions=True)
        failures = [r for r in results if isinstance(r, Exception)]
        for failure in failures:
            logger.warning(
                "Best-effort preload read failed",
                batch=label,
                error=str(failure),
                error_type=type(failure).__name__,
            )
        return not failures

    async def preload_critical_data(self, user_id: str) -> bool:
        """Fill the user's profile, entitlements and access matrix.

        Returns:
            True if every read succeeded. Never raises.
        """
        with log_context(user_id=user_id):
            return await self._run_best_effort(
                "preload_critical_data",
                [
                    self.user_profile(user_id),
                    self.user_entitlements(user_id),
                    self.access_matrix(user_id),
                ],
            )

    async def warm_cache(self) -> bool:
        """Fill the program, template and stats lists. Never raises."""
        return await self._run_best_effort(
            "warm_cache",
            [self.pt_programs(), self.pt_templates(), self.pt_stats()],
        )

    async def preload_admin_data(self) -> bool:
        """Fill the admin dashboard's templates, users and summary. Never raises."""
        return await self._run_best_effort(
            "preload_admin_data",
            [self.pt_templates(), self.users(), self.pt_stats_summary()],
        )
