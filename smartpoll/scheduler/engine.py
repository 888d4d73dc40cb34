"""PollingScheduler — APScheduler-backed polling with backoff, circuit breaking and degradation."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from smartpoll.alerts.sink import AlertSink
from smartpoll.cache.store import CacheStore
from smartpoll.config import settings
from smartpoll.scheduler.models import (
    ErrorStats,
    PollingConfig,
    PollingRegistration,
    PollingState,
    TaskPhase,
    default_polling_config,
)
from smartpoll.scheduler.policy import (
    is_network_error,
    next_backoff_multiplier,
    next_delay_ms,
    should_open_circuit,
)
from smartpoll.visibility import VisibilityGate

if TYPE_CHECKING:
    from collections.abc import Callable

    from smartpoll.scheduler.models import PollingCallback

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


class PollingScheduler:
    """Runs registered polling tasks on adaptive intervals.

    Each task has at most one pending APScheduler ``DateTrigger`` job. The
    job is re-armed only after the previous execution settles, so a task
    never overlaps with itself. Failures stretch the interval (exponential
    backoff) and eventually open a circuit breaker that stops automatic
    scheduling until :meth:`reset_circuit_breaker` or a successful
    :meth:`force_refresh`.

    Args:
        cache: Store for last successful results.
        alerts: Sink receiving task-health alerts.
        visibility: Gate signalling whether the host context is active.
        timezone: IANA timezone for APScheduler (default from settings).
        stale_cache_alert_ms: Cached data older than this raises a warning
            while a task is failing.
        background_interval_multiplier: Interval scale for tasks that keep
            running while the context is inactive.
    """

    def __init__(
        self,
        *,
        cache: CacheStore | None = None,
        alerts: AlertSink | None = None,
        visibility: VisibilityGate | None = None,
        timezone: str | None = None,
        stale_cache_alert_ms: float | None = None,
        background_interval_multiplier: float | None = None,
    ) -> None:
        self._cache = cache if cache is not None else CacheStore()
        self._alerts = alerts if alerts is not None else AlertSink()
        self._gate = visibility if visibility is not None else VisibilityGate()
        self._timezone = timezone or settings.scheduler_timezone
        self._stale_cache_alert_ms = (
            settings.stale_cache_alert_ms if stale_cache_alert_ms is None else stale_cache_alert_ms
        )
        self._background_multiplier = (
            settings.background_interval_multiplier
            if background_interval_multiplier is None
            else background_interval_multiplier
        )
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._registrations: dict[str, PollingRegistration] = {}
        self._global_paused = False
        self._running = False
        self._unsubscribe_visibility: Callable[[], None] | None = self._gate.subscribe(
            self._on_visibility_change
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def global_paused(self) -> bool:
        return self._global_paused

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def alerts(self) -> AlertSink:
        return self._alerts

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start firing timers. Tasks registered earlier are already armed."""
        if self._running:
            return
        if self._unsubscribe_visibility is None:
            self._unsubscribe_visibility = self._gate.subscribe(self._on_visibility_change)
        self._scheduler.start()
        self._running = True
        logger.info(
            "Polling scheduler started with %d task(s) (tz=%s)",
            len(self._registrations),
            self._timezone,
        )

    async def stop(self) -> None:
        """Cancel every timer, detach from the visibility gate and shut down."""
        for reg in self._registrations.values():
            self._cancel(reg)
        if self._unsubscribe_visibility is not None:
            self._unsubscribe_visibility()
            self._unsubscribe_visibility = None
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Polling scheduler stopped")

    # -- Registration ----------------------------------------------------------

    def register(
        self,
        task_id: str,
        callback: PollingCallback,
        config: PollingConfig | None = None,
    ) -> PollingRegistration:
        """Register *callback* under *task_id*, replacing any previous registration."""
        if task_id in self._registrations:
            logger.warning("Polling task %s already registered; replacing it", task_id)
            self.unregister(task_id)

        config = config or default_polling_config()
        reg = PollingRegistration(
            id=task_id,
            callback=callback,
            config=config,
            state=PollingState(active=config.enabled),
        )
        self._registrations[task_id] = reg

        if config.enabled:
            self._apply_holds(reg)
            if self._can_schedule(reg):
                self._arm(reg)
        logger.info(
            "Registered polling task %s (interval=%dms, enabled=%s)",
            task_id,
            config.interval_ms,
            config.enabled,
        )
        return reg

    def unregister(self, task_id: str) -> bool:
        """Stop and forget a task, dropping its alerts and cached data."""
        reg = self._registrations.pop(task_id, None)
        if reg is None:
            return False
        self._cancel(reg)
        reg.state.active = False
        reg.state.phase = TaskPhase.IDLE
        self._alerts.clear_for_task(task_id)
        self._cache.delete(task_id)
        logger.info("Unregistered polling task %s", task_id)
        return True

    # -- Pause / resume --------------------------------------------------------

    def pause(self, task_id: str) -> None:
        reg = self._registrations.get(task_id)
        if reg is None:
            return
        self._cancel(reg)
        reg.state.paused = True
        reg.state.paused_for_inactivity = False

    def resume(self, task_id: str) -> None:
        """Clear the pause and re-arm. An open circuit stays unarmed until reset."""
        reg = self._registrations.get(task_id)
        if reg is None or self._global_paused or not reg.config.enabled:
            return
        reg.state.paused = False
        reg.state.paused_for_inactivity = False
        if reg.timer is None and self._can_schedule(reg):
            self._arm(reg)

    def pause_all(self) -> None:
        self._global_paused = True
        for reg in self._registrations.values():
            if reg.state.active:
                self._cancel(reg)
                reg.state.paused = True
        logger.info("Paused all polling tasks")

    def resume_all(self) -> None:
        self._global_paused = False
        visible = self._gate.is_active()
        for reg in self._registrations.values():
            if not (reg.config.enabled and reg.state.paused):
                continue
            if reg.config.pause_on_inactive and not visible:
                reg.state.paused_for_inactivity = True
                continue
            self.resume(reg.id)
        logger.info("Resumed all polling tasks")

    # -- Configuration ---------------------------------------------------------

    def update_config(self, task_id: str, **changes: Any) -> bool:
        """Merge *changes* into the task's config and re-arm its timer.

        Changing ``circuit_breaker_threshold`` or ``max_retries`` also resets
        the circuit breaker. Raises ``pydantic.ValidationError`` on invalid
        values, before anything is modified.
        """
        reg = self._registrations.get(task_id)
        if reg is None:
            logger.warning("No polling registration found with id %s", task_id)
            return False

        new_config = reg.config.merged(**changes)
        self._cancel(reg)
        reg.config = new_config

        if "circuit_breaker_threshold" in changes or "max_retries" in changes:
            self._clear_failures(reg)
            logger.info("Circuit breaker reset for %s after config change", task_id)

        if reg.state.paused_for_inactivity and not new_config.pause_on_inactive:
            reg.state.paused = False
            reg.state.paused_for_inactivity = False

        reg.state.active = new_config.enabled
        if new_config.enabled:
            self._apply_holds(reg)
        if self._can_schedule(reg):
            self._arm(reg)
        return True

    # -- Circuit breaker and manual refresh ------------------------------------

    def reset_circuit_breaker(self, task_id: str) -> bool:
        reg = self._registrations.get(task_id)
        if reg is None:
            return False
        self._clear_failures(reg)
        reg.state.last_error = None
        if reg.state.phase == TaskPhase.SUSPENDED:
            reg.state.phase = TaskPhase.IDLE
        self._alerts.clear_for_task(task_id)
        if self._can_schedule(reg):
            self._arm(reg)
        logger.info("Circuit breaker reset for %s", task_id)
        return True

    async def force_refresh(self, task_id: str) -> bool:
        """Run the task's callback immediately, outside its cadence.

        A failure is reported as an alert but does not count towards the
        circuit breaker. A success resets the failure counters, closes an open
        circuit and restarts the timer at the base interval.
        """
        reg = self._registrations.get(task_id)
        if reg is None:
            return False

        async with reg.lock:
            reg.state.last_execution = _now()
            phase_before = reg.state.phase
            reg.state.phase = TaskPhase.RUNNING
            try:
                result = await reg.callback()
            except Exception as exc:
                logger.exception("Force refresh failed for %s", task_id)
                reg.state.phase = phase_before
                if reg.config.enable_alerts and self._is_current(reg):
                    self._alerts.polling_error(
                        task_id,
                        exc,
                        reg.state.consecutive_errors,
                        retry=partial(self.force_refresh, task_id),
                    )
                return False
            if not self._is_current(reg):
                logger.debug("Discarding refresh result for removed task %s", task_id)
                return False
            self._record_success(reg, result, source="force_refresh")

        if self._is_current(reg) and self._can_schedule(reg):
            self._arm(reg)
        return True

    # -- Queries ---------------------------------------------------------------

    def get_registration(self, task_id: str) -> PollingRegistration | None:
        return self._registrations.get(task_id)

    def get_all_registrations(self) -> list[PollingRegistration]:
        return list(self._registrations.values())

    def get_error_stats(self, task_id: str) -> ErrorStats | None:
        reg = self._registrations.get(task_id)
        if reg is None:
            return None
        return ErrorStats.from_state(reg.state)

    def get_cached_data(self, task_id: str) -> Any | None:
        return self._cache.get(task_id)

    def is_context_visible(self) -> bool:
        return self._gate.is_active()

    # -- Execution -------------------------------------------------------------

    async def _run_task(self, task_id: str) -> None:
        """Callback invoked by APScheduler when a task's timer fires."""
        reg = self._registrations.get(task_id)
        if reg is None:
            logger.debug("Timer fired for unknown task %s", task_id)
            return
        # The job has fired; forget the handle so nothing tries to cancel it.
        self._cancel(reg)

        async with reg.lock:
            if not self._is_current(reg) or not self._can_schedule(reg):
                logger.debug("Skipping stale firing for %s", task_id)
                return
            await self._execute(reg)

        # Re-check after the await: the task may have been paused or replaced.
        if not self._is_current(reg):
            logger.debug("Task %s was removed during execution; not re-arming", task_id)
            return
        if self._can_schedule(reg):
            self._arm(reg)

    async def _execute(self, reg: PollingRegistration) -> bool:
        reg.state.last_execution = _now()
        reg.state.phase = TaskPhase.RUNNING
        try:
            result = await reg.callback()
        except Exception as exc:
            if not self._is_current(reg):
                logger.debug("Ignoring failure of removed task %s: %s", reg.id, exc)
                return False
            logger.exception(
                "Polling task %s failed (%d consecutive)",
                reg.id,
                reg.state.consecutive_errors + 1,
            )
            self._record_failure(reg, exc)
            return False
        if not self._is_current(reg):
            logger.debug("Discarding result of removed task %s", reg.id)
            return False
        self._record_success(reg, result, source="timer")
        return True

    def _is_current(self, reg: PollingRegistration) -> bool:
        return self._registrations.get(reg.id) is reg

    def _record_success(self, reg: PollingRegistration, result: Any, *, source: str) -> None:
        config = reg.config
        state = reg.state
        if config.enable_caching and result is not None:
            self._cache.set(
                reg.id,
                result,
                config.cache_ttl_ms,
                {"task_id": reg.id, "source": source},
            )

        was_open = state.circuit_breaker_open
        state.consecutive_errors = 0
        state.backoff_multiplier = 1
        state.last_error = None
        state.using_cached_data = False
        state.last_successful_execution = _now()
        state.circuit_breaker_open = False
        state.phase = TaskPhase.SUCCEEDED

        if was_open:
            logger.info("Circuit breaker closed for %s", reg.id)
            if config.enable_alerts:
                self._alerts.recovery(reg.id)

    def _record_failure(self, reg: PollingRegistration, error: Exception) -> None:
        config = reg.config
        state = reg.state
        state.error_count += 1
        state.consecutive_errors += 1
        state.last_error = error
        state.phase = TaskPhase.FAILED

        if config.graceful_degradation and config.enable_caching:
            cached = self._cache.get_with_age(reg.id)
            if cached is not None:
                state.using_cached_data = True
                if config.enable_alerts and cached.age_ms > self._stale_cache_alert_ms:
                    self._alerts.cached_data(
                        reg.id, cached.age_ms, refresh=partial(self.force_refresh, reg.id)
                    )

        if config.enable_alerts:
            raise_alert = (
                self._alerts.network_error if is_network_error(error) else self._alerts.polling_error
            )
            raise_alert(
                reg.id,
                error,
                state.consecutive_errors,
                retry=partial(self.force_refresh, reg.id),
            )

        if should_open_circuit(state.consecutive_errors, config.circuit_breaker_threshold):
            state.circuit_breaker_open = True
            logger.warning(
                "Circuit breaker opened for %s after %d consecutive errors",
                reg.id,
                state.consecutive_errors,
            )
            if config.enable_alerts:
                self._alerts.circuit_breaker_open(
                    reg.id,
                    state.consecutive_errors,
                    reset=partial(self.reset_circuit_breaker, reg.id),
                )
            self._cancel(reg)
            state.phase = TaskPhase.SUSPENDED
            return

        state.backoff_multiplier = next_backoff_multiplier(
            state.backoff_multiplier, exponential_backoff=config.exponential_backoff
        )

    # -- Timers ----------------------------------------------------------------

    def _can_schedule(self, reg: PollingRegistration) -> bool:
        state = reg.state
        return (
            reg.config.enabled
            and state.active
            and not state.paused
            and not self._global_paused
            and not state.circuit_breaker_open
        )

    def _arm(self, reg: PollingRegistration) -> None:
        """Replace the task's pending timer with one at its current delay."""
        self._cancel(reg)
        if self._global_paused or reg.state.circuit_breaker_open:
            return

        scale = 1.0
        if not self._gate.is_active() and not reg.config.pause_on_inactive:
            scale = self._background_multiplier
        delay = next_delay_ms(reg.config, reg.state.backoff_multiplier, scale=scale)
        run_at = _now() + timedelta(milliseconds=delay)

        reg.timer = self._scheduler.add_job(
            self._run_task,
            trigger=DateTrigger(run_date=run_at, timezone=self._timezone),
            id=reg.id,
            name=f"poll:{reg.id}",
            args=[reg.id],
            misfire_grace_time=None,
            replace_existing=True,
        )
        reg.state.next_execution = run_at
        reg.state.next_delay_ms = delay
        if reg.state.phase != TaskPhase.RUNNING:
            reg.state.phase = TaskPhase.SCHEDULED
        logger.debug("Armed %s in %.0fms (backoff x%d)", reg.id, delay, reg.state.backoff_multiplier)

    def _cancel(self, reg: PollingRegistration) -> None:
        if reg.timer is not None:
            try:
                self._scheduler.remove_job(reg.id)
            except JobLookupError:
                logger.debug("Job %s already gone from the scheduler", reg.id)
            reg.timer = None
        reg.state.next_execution = None
        reg.state.next_delay_ms = None
        if reg.state.phase == TaskPhase.SCHEDULED:
            reg.state.phase = TaskPhase.IDLE

    def _apply_holds(self, reg: PollingRegistration) -> None:
        """Mark an enabled task paused while a global or inactivity pause is in force."""
        if self._global_paused:
            reg.state.paused = True
        if reg.config.pause_on_inactive and not self._gate.is_active() and not reg.state.paused:
            reg.state.paused = True
            reg.state.paused_for_inactivity = True

    def _clear_failures(self, reg: PollingRegistration) -> None:
        reg.state.circuit_breaker_open = False
        reg.state.consecutive_errors = 0
        reg.state.backoff_multiplier = 1

    # -- Visibility ------------------------------------------------------------

    def _on_visibility_change(self, active: bool) -> None:
        if active:
            self._resume_after_inactivity()
        else:
            self._suspend_for_inactivity()

    def _suspend_for_inactivity(self) -> None:
        paused = 0
        for reg in self._registrations.values():
            if reg.config.pause_on_inactive:
                if reg.state.active and not reg.state.paused:
                    self._cancel(reg)
                    reg.state.paused = True
                    reg.state.paused_for_inactivity = True
                    paused += 1
            elif reg.timer is not None and self._background_multiplier != 1.0:
                self._arm(reg)
        logger.info("Context inactive: paused %d polling task(s)", paused)

    def _resume_after_inactivity(self) -> None:
        resumed = 0
        for reg in self._registrations.values():
            if reg.state.paused_for_inactivity:
                if self._global_paused:
                    continue
                reg.state.paused = False
                reg.state.paused_for_inactivity = False
                if self._can_schedule(reg):
                    self._arm(reg)
                    resumed += 1
            elif reg.timer is not None and self._background_multiplier != 1.0:
                self._arm(reg)
        logger.info("Context active: resumed %d polling task(s)", resumed)
