"""
Rate Limit Health Monitor

Records every limiter operation, turns limiter infrastructure failures into
incidents, and drives automatic fallback and recovery.

Severity handling:
- critical: force fallback mode (persisted flag), recovery probe in 5 minutes
- high: recovery probe in 2 minutes
- medium: recovery probe in 1 minute
- low: log only

A recovery probe that succeeds clears the fallback flag and resolves every
open incident. A scheduled probe that fails is scheduled again with the
same delay. A periodic health check runs independently of traffic so a
backend outage is noticed while the app is idle.

Metrics (with their latency samples) and the incident log are persisted to
a LocalStateStore and merged with the defaults on load, so an older or
partial snapshot never replaces fields it does not know about. Traffic
writes metrics at most once per metrics_persist_interval; health checks and
close() always write them.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from app.core.rate_limit import now_ms
from app.services.local_state import LocalStateStore

logger = logging.getLogger(__name__)

FORCE_FALLBACK_KEY = "force_rate_limit_fallback"
METRICS_KEY = "rate_limit_metrics"
INCIDENTS_KEY = "rate_limit_incidents"
RESPONSE_TIMES_KEY = "rate_limit_response_times"

DAY_MS = 24 * 60 * 60 * 1000


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Seconds until the recovery probe, per severity (low schedules nothing)
RECOVERY_DELAYS = {
    Severity.CRITICAL: 5 * 60,
    Severity.HIGH: 2 * 60,
    Severity.MEDIUM: 60,
}


class RecoveryEvent(str, Enum):
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Incident(BaseModel):
    """A failure of the limiting infrastructure itself (not an over-quota rejection)."""
    id: str
    timestamp: int
    action: str
    identifier: str
    error_message: str
    severity: Severity
    resolved: bool = False


class HealthMetrics(BaseModel):
    total_requests: int = 0
    blocked_requests: int = 0
    error_count: int = 0
    average_response_time: float = 0.0
    uptime_percent: float = 100.0
    last_health_check_at: Optional[int] = None


class HealthCheckResult(BaseModel):
    healthy: bool
    response_time_ms: float


class HealthReport(BaseModel):
    status: str
    summary: str
    metrics: HealthMetrics
    active_incident_count: int
    recommendations: list[str]


def classify_severity(message: str) -> Severity:
    """
    Map error text to a severity tier by keyword.

    network/timeout -> medium, auth/unauthorized/forbidden -> high,
    unavailable/backend down -> critical, anything else -> low.
    """
    text = message.lower()

    if "network" in text or "timeout" in text:
        return Severity.MEDIUM

    if "auth" in text or "unauthorized" in text or "forbidden" in text:
        return Severity.HIGH

    if "unavailable" in text or "backend down" in text or "redis down" in text:
        return Severity.CRITICAL

    return Severity.LOW


def schedules_recovery(error: BaseException) -> bool:
    """True when an incident for `error` schedules a recovery attempt."""
    message = str(error) or error.__class__.__name__
    return classify_severity(message) in RECOVERY_DELAYS


class HealthMonitor:
    """
    Health and incident monitor for one limiter deployment.

    Args:
        state: Durable store for metrics, incidents and the fallback flag
        probe: Async reachability check of the limiting backend
        probe_timeout: Seconds before a hung probe counts as unhealthy
        health_check_interval: Seconds between periodic health checks
        incident_retention_days: Age after which incidents are swept
        clock: Epoch-millisecond clock
        max_samples: Latency samples kept for the rolling average
        metrics_persist_interval: Minimum seconds between metric writes
            triggered by traffic (health checks and close() always write)
    """

    def __init__(
        self,
        state: Optional[LocalStateStore] = None,
        probe: Optional[Callable[[], Awaitable[bool]]] = None,
        probe_timeout: float = 5.0,
        health_check_interval: float = 300.0,
        incident_retention_days: int = 7,
        clock: Callable[[], int] = now_ms,
        max_samples: int = 100,
        metrics_persist_interval: float = 30.0,
    ):
        self.state = state if state is not None else LocalStateStore()
        self.probe = probe
        self.probe_timeout = probe_timeout
        self.health_check_interval = health_check_interval
        self.incident_retention_days = incident_retention_days
        self.clock = clock
        self.metrics_persist_interval_ms = int(metrics_persist_interval * 1000)

        self.metrics = HealthMetrics()
        self.incidents: dict[str, Incident] = {}
        self._response_times: deque[float] = deque(maxlen=max_samples)
        self._listeners: list[Callable[[RecoveryEvent], None]] = []
        self._recovery_tasks: dict[asyncio.Task, float] = {}
        self._health_task: Optional[asyncio.Task] = None
        self._recovery_lock = asyncio.Lock()
        self._metrics_persisted_at = self.clock()

        self._load_persisted_data()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._health_task is not None and not self._health_task.done()

    def start(self) -> None:
        """Start the periodic health check on the running loop."""
        if not self.running:
            self._health_task = asyncio.get_running_loop().create_task(self._health_loop())

    async def close(self) -> None:
        tasks = list(self._recovery_tasks)
        if self._health_task is not None:
            tasks.append(self._health_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._recovery_tasks.clear()
        self._health_task = None
        self._persist_metrics()

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            try:
                self.cleanup_old_incidents()
                if self.is_fallback_forced() or self.get_active_incidents():
                    await self.attempt_recovery()
                else:
                    await self.perform_health_check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic health check failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_operation(
        self,
        action: str,
        identifier: str,
        success: bool,
        latency_ms: float,
        error: Optional[BaseException] = None,
    ) -> None:
        """
        Record one limiter operation.

        Args:
            action: Action that was checked
            identifier: Subject that was checked
            success: False when the request was blocked
            latency_ms: Elapsed time of the operation
            error: Infrastructure failure, if the limiter itself failed
        """
        self.metrics.total_requests += 1

        if not success:
            self.metrics.blocked_requests += 1

        if error is not None:
            self.metrics.error_count += 1
            self._record_incident(action, identifier, error)

        self._response_times.append(latency_ms)
        self.metrics.average_response_time = sum(self._response_times) / len(self._response_times)

        if self.clock() - self._metrics_persisted_at >= self.metrics_persist_interval_ms:
            self._persist_metrics()

    def _record_incident(self, action: str, identifier: str, error: BaseException) -> Incident:
        message = str(error) or error.__class__.__name__
        incident = Incident(
            id=f"{self.clock()}-{uuid.uuid4().hex[:9]}",
            timestamp=self.clock(),
            action=action,
            identifier=identifier,
            error_message=message,
            severity=classify_severity(message),
        )
        self.incidents[incident.id] = incident
        self._persist_incidents()
        self._handle_incident(incident)
        return incident

    def _handle_incident(self, incident: Incident) -> None:
        summary = f"Rate limit incident [{incident.severity.value}] {incident.action}: {incident.error_message}"

        if incident.severity == Severity.CRITICAL:
            logger.error(f"CRITICAL RATE LIMITING FAILURE - {summary}")
            self.state.set(FORCE_FALLBACK_KEY, True)
        elif incident.severity == Severity.HIGH:
            logger.error(summary)
        elif incident.severity == Severity.MEDIUM:
            logger.warning(summary)
        else:
            logger.info(summary)

        delay = RECOVERY_DELAYS.get(incident.severity)
        if delay is not None:
            self._schedule_recovery(delay)

    def _schedule_recovery(self, delay: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, recovery probe not scheduled")
            return

        task = loop.create_task(self._delayed_recovery(delay))
        self._recovery_tasks[task] = delay
        task.add_done_callback(lambda done: self._recovery_tasks.pop(done, None))

    async def _delayed_recovery(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if await self.attempt_recovery():
            return

        # Retry until the backend answers, one chain at a time
        current = asyncio.current_task()
        if not any(task is not current and not task.done() for task in self._recovery_tasks):
            self._schedule_recovery(delay)

    @property
    def pending_recoveries(self) -> list[float]:
        """Delays (seconds) of the recovery probes still waiting to run."""
        return sorted(delay for task, delay in self._recovery_tasks.items() if not task.done())

    # ------------------------------------------------------------------
    # Fallback flag and recovery
    # ------------------------------------------------------------------

    def is_fallback_forced(self) -> bool:
        return self.state.get(FORCE_FALLBACK_KEY) is True

    def force_fallback(self) -> None:
        self.state.set(FORCE_FALLBACK_KEY, True)

    def add_listener(self, listener: Callable[[RecoveryEvent], None]) -> None:
        """Register a callback receiving recovery events."""
        self._listeners.append(listener)

    def _notify(self, event: RecoveryEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Recovery listener failed on {event.value}: {e}", exc_info=True)

    async def attempt_recovery(self) -> bool:
        """
        Probe the backend; on success clear the fallback flag and resolve
        every open incident.

        Returns:
            True if the backend answered
        """
        async with self._recovery_lock:
            self._notify(RecoveryEvent.STARTED)
            result = await self.perform_health_check()

            if not result.healthy:
                logger.warning("Recovery attempt failed, staying in fallback mode")
                self._notify(RecoveryEvent.FAILED)
                return False

            self.state.remove(FORCE_FALLBACK_KEY)
            for incident in self.incidents.values():
                incident.resolved = True
            self._persist_incidents()

            logger.info("Rate limiting service recovered successfully")
            self._notify(RecoveryEvent.SUCCEEDED)
            return True

    async def perform_health_check(self) -> HealthCheckResult:
        started = time.perf_counter()
        healthy = False

        if self.probe is not None:
            try:
                healthy = bool(await asyncio.wait_for(self.probe(), timeout=self.probe_timeout))
            except asyncio.TimeoutError:
                logger.error(f"Health check timed out after {self.probe_timeout}s")
            except Exception as e:
                logger.error(f"Health check failed: {e}")

        self.metrics.last_health_check_at = self.clock()
        self.metrics.uptime_percent = 100.0 if healthy else 0.0
        self._persist_metrics()

        return HealthCheckResult(
            healthy=healthy,
            response_time_ms=(time.perf_counter() - started) * 1000,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_metrics(self) -> HealthMetrics:
        return self.metrics.model_copy()

    def get_active_incidents(self) -> list[Incident]:
        return [incident for incident in self.incidents.values() if not incident.resolved]

    def get_incident_history(self, limit: int = 50) -> list[Incident]:
        return sorted(self.incidents.values(), key=lambda i: i.timestamp, reverse=True)[:limit]

    def cleanup_old_incidents(self) -> int:
        cutoff = self.clock() - self.incident_retention_days * DAY_MS
        stale = [key for key, incident in self.incidents.items() if incident.timestamp < cutoff]
        for key in stale:
            del self.incidents[key]
        if stale:
            self._persist_incidents()
        return len(stale)

    def generate_health_report(self) -> HealthReport:
        active = self.get_active_incidents()
        critical = [i for i in active if i.severity == Severity.CRITICAL]
        high = [i for i in active if i.severity == Severity.HIGH]

        status = "healthy"
        summary = "Rate limiting service is operating normally"
        recommendations: list[str] = []

        if critical:
            status = "unhealthy"
            summary = f"Critical issues detected ({len(critical)} critical incidents)"
            recommendations.append("Investigate critical incidents immediately")
            recommendations.append("Consider enabling fallback mode")
        elif high or self.metrics.error_count > 10:
            status = "degraded"
            summary = f"Service degraded ({len(high)} high severity incidents)"
            recommendations.append("Monitor service closely")
            recommendations.append("Check the remote rate limit backend status")

        if self.metrics.average_response_time > 1000:
            recommendations.append("Response times are high - check network connectivity")

        total = self.metrics.total_requests
        if total and self.metrics.blocked_requests / total > 0.1:
            recommendations.append("High rate limit block rate - consider adjusting limits")

        return HealthReport(
            status=status,
            summary=summary,
            metrics=self.get_metrics(),
            active_incident_count=len(active),
            recommendations=recommendations,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist_metrics(self) -> None:
        self._metrics_persisted_at = self.clock()
        try:
            self.state.set(METRICS_KEY, self.metrics.model_dump())
            self.state.set(RESPONSE_TIMES_KEY, list(self._response_times))
        except OSError as e:
            logger.warning(f"Failed to persist rate limit metrics: {e}")

    def _persist_incidents(self) -> None:
        try:
            self.state.set(
                INCIDENTS_KEY,
                [incident.model_dump(mode="json") for incident in self.incidents.values()],
            )
        except OSError as e:
            logger.warning(f"Failed to persist rate limit incidents: {e}")

    def _load_persisted_data(self) -> None:
        stored = self.state.get(METRICS_KEY)
        if isinstance(stored, dict):
            known = {k: v for k, v in stored.items() if k in HealthMetrics.model_fields}
            try:
                self.metrics = HealthMetrics.model_validate({**self.metrics.model_dump(), **known})
            except ValidationError as e:
                logger.warning(f"Failed to load persisted rate limit metrics: {e}")

        samples = self.state.get(RESPONSE_TIMES_KEY)
        if isinstance(samples, list):
            self._response_times.extend(
                float(sample) for sample in samples if isinstance(sample, (int, float))
            )

        for raw in self.state.get(INCIDENTS_KEY, None) or []:
            try:
                incident = Incident.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable incident: {e}")
                continue
            self.incidents[incident.id] = incident
