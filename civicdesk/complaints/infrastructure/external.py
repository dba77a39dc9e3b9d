"""
Complaint External Service Integrations
=======================================

External services for the complaint lifecycle:
- YAML lifecycle config watcher (hot reload)
- Notification dispatchers (logging, webhook, composite)
- APScheduler wrapper for the escalation cycle
"""

import asyncio
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from civicdesk.config import settings
from civicdesk.core import NotificationException
from civicdesk.complaints.application.dto import NotificationPayload
from civicdesk.complaints.application.services import (
    EscalationService,
    ILifecycleConfigProvider,
    INotificationDispatcher,
)
from civicdesk.complaints.domain import LifecycleConfig, NotificationEvent
from civicdesk.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


# ========== Lifecycle configuration ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for lifecycle config file changes."""

    def __init__(self, config_manager: "LifecycleConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Lifecycle config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()

    on_created = on_modified


class LifecycleConfigManager(ILifecycleConfigProvider):
    """
    Thread-safe lifecycle configuration manager with hot-reload support.

    Uses watchdog to monitor the YAML file and swap in a new
    ``LifecycleConfig`` without restarting the service. A file that fails to
    parse or validate is rejected and the previous configuration stays live.
    """

    def __init__(self):
        self._config: Optional[LifecycleConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> LifecycleConfig:
        """Initial configuration load. Invalid files fail startup."""
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
        logger.info(
            "Lifecycle configuration loaded",
            extra={"path": str(self._path), "version": config.version}
        )
        return config

    def _load_from_file(self, path: Path) -> LifecycleConfig:
        if not path.exists():
            logger.warning("Lifecycle config file not found, using defaults", extra={"path": str(path)})
            return LifecycleConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return LifecycleConfig(**data)

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, OSError, TypeError) as e:
            logger.error(
                "Failed to reload lifecycle config, keeping previous version",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info("Lifecycle configuration reloaded", extra={"version": new_config.version})
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skips watching when the file does not exist or the platform has no
        usable file notification backend.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Lifecycle config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching lifecycle config", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> LifecycleConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Lifecycle configuration not loaded")
            return self._config

    def get_config(self) -> LifecycleConfig:
        return self.config


# ========== Notification dispatch ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class LoggingNotificationDispatcher(INotificationDispatcher):
    """Default dispatcher: writes every notification to the structured log."""

    async def notify(self, recipients: List[str], event: NotificationEvent) -> None:
        logger.info(
            "Notification dispatched",
            extra={
                "recipients": recipients,
                "kind": event.kind.value,
                "complaint_id": event.complaint_id,
                "subject": event.subject,
                "body": event.message,
            }
        )


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Webhook client with circuit breaker and retry logic.

    Posts a ``NotificationPayload`` as JSON with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    Raises ``NotificationException`` when delivery ultimately fails so the
    caller can count the failure.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: Optional[float] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout or settings.notification_timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff_base = backoff_base
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def _build_payload(recipients: List[str], event: NotificationEvent) -> Dict[str, Any]:
        payload = NotificationPayload(
            recipients=recipients,
            kind=event.kind,
            complaint_id=event.complaint_id,
            subject=event.subject,
            message=event.message,
            metadata=event.metadata,
            sent_at=datetime.now(timezone.utc),
        )
        return payload.model_dump(mode="json")

    async def notify(self, recipients: List[str], event: NotificationEvent) -> None:
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping webhook notification",
                extra={"complaint_id": event.complaint_id}
            )
            raise NotificationException(
                "webhook circuit breaker is open",
                {"complaint_id": event.complaint_id}
            )

        body = self._build_payload(recipients, event)
        last_error = None

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=body)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Webhook notification sent",
                        extra={"complaint_id": event.complaint_id, "kind": event.kind.value}
                    )
                    return

                last_error = f"webhook returned {response.status_code}"
                logger.warning(
                    "Webhook returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.error(
                    "Webhook notification failed",
                    extra={"error": last_error, "attempt": attempt + 1, "complaint_id": event.complaint_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * (2 ** attempt))

        self._circuit_breaker.record_failure()
        raise NotificationException(
            last_error or "webhook delivery failed",
            {"complaint_id": event.complaint_id, "attempts": self._max_retries}
        )

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class CompositeNotificationDispatcher(INotificationDispatcher):
    """Fans an event out to several dispatchers; fails if any of them failed."""

    def __init__(self, dispatchers: Sequence[INotificationDispatcher]):
        self._dispatchers = list(dispatchers)

    async def notify(self, recipients: List[str], event: NotificationEvent) -> None:
        failures = []
        for dispatcher in self._dispatchers:
            try:
                await dispatcher.notify(recipients, event)
            except NotificationException as e:
                failures.append(e.message)

        if failures:
            raise NotificationException("; ".join(failures), {"complaint_id": event.complaint_id})

    async def close(self) -> None:
        for dispatcher in self._dispatchers:
            close = getattr(dispatcher, "close", None)
            if close is not None:
                await close()


def build_dispatcher(webhook_url: Optional[str] = None) -> INotificationDispatcher:
    """Logging dispatcher, plus the webhook when one is configured."""
    dispatchers: List[INotificationDispatcher] = [LoggingNotificationDispatcher()]
    if webhook_url:
        dispatchers.append(WebhookNotificationDispatcher(webhook_url))
    return CompositeNotificationDispatcher(dispatchers)


# ========== Escalation scheduler ==========

class EscalationScheduler:
    """
    Wrapper for APScheduler running the escalation cycle.

    Owns the single periodic job (``max_instances=1``, so cycles never
    overlap). ``stop`` lets the in-flight complaint finish, then waits a
    bounded time for the cycle to end.
    """

    JOB_ID = "escalation_cycle"

    def __init__(
        self,
        service: EscalationService,
        interval_seconds: int = 900,
        run_immediately: bool = False,
        shutdown_timeout: Optional[float] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._service = service
        self._run_immediately = run_immediately
        self._shutdown_timeout = (
            settings.scheduler_shutdown_timeout_seconds if shutdown_timeout is None else shutdown_timeout
        )
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._idle = asyncio.Event()
        self._idle.set()
        self.last_report = None

    async def _run_cycle(self) -> None:
        """Job body: one escalation cycle, never raising into APScheduler."""
        self._idle.clear()
        try:
            with log_latency(logger, "escalation_cycle", interval_seconds=self.interval_seconds):
                self.last_report = await self._service.run_escalation_cycle()
        except Exception:
            logger.exception("Escalation cycle crashed")
        finally:
            self._idle.set()

    async def start(self) -> None:
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._service.reset_stop()
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

        job_kwargs = {}
        if self._run_immediately:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self._scheduler.add_job(
            self._run_cycle,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="Complaint Escalation Cycle",
            misfire_grace_time=60,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
            **job_kwargs,
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> bool:
        """
        Stop the scheduler gracefully.

        Returns:
            True if the in-flight cycle (if any) finished within the timeout
        """
        if not self._running:
            return True

        self._service.request_stop()
        if self._scheduler:
            self._scheduler.pause()

        finished = True
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=self._shutdown_timeout)
        except asyncio.TimeoutError:
            finished = False
            logger.warning(
                "Escalation cycle did not finish before shutdown timeout",
                extra={"timeout_seconds": self._shutdown_timeout}
            )

        # Executor shutdown cancels job tasks still pending
        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        self._scheduler = None
        logger.info("Escalation scheduler stopped")
        return finished

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()
