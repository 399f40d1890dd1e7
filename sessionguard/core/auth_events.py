"""
Authentication audit events.

Publishing is fire-and-forget: events are handed to a single background
worker, and a failing listener is logged without ever reaching the
authentication call that emitted the event.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional
import enum
import logging
import threading
from sessionguard.db.base import utcnow

logger = logging.getLogger(__name__)


class AuthEventType(str, enum.Enum):
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    REFRESH_TOKEN = "refresh_token"
    INVALID_TOKEN = "invalid_token"
    ACCOUNT_LOCKED = "account_locked"


@dataclass
class AuthenticationEvent:
    username: str
    event_type: AuthEventType
    message: str
    ip_address: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)


AuthEventListener = Callable[[AuthenticationEvent], None]


def log_authentication_event(event: AuthenticationEvent) -> None:
    """Default listener: write the event to the audit log."""
    if event.event_type == AuthEventType.LOGIN_SUCCESS:
        logger.info(f"Login success - User: {event.username}, IP: {event.ip_address}")
    elif event.event_type == AuthEventType.LOGIN_FAILED:
        logger.warning(
            f"Login failed - User: {event.username}, IP: {event.ip_address}, Reason: {event.message}"
        )
    elif event.event_type == AuthEventType.LOGOUT:
        logger.info(f"Logout - User: {event.username}, IP: {event.ip_address}")
    elif event.event_type == AuthEventType.REFRESH_TOKEN:
        logger.debug(f"Token refresh - User: {event.username}, IP: {event.ip_address}")
    elif event.event_type == AuthEventType.INVALID_TOKEN:
        logger.warning(
            f"Invalid token - User: {event.username}, IP: {event.ip_address}, Reason: {event.message}"
        )
    elif event.event_type == AuthEventType.ACCOUNT_LOCKED:
        logger.warning(
            f"Account locked - User: {event.username}, IP: {event.ip_address}, Reason: {event.message}"
        )


class AuthEventPublisher:
    def __init__(self, listeners: Optional[List[AuthEventListener]] = None):
        self._listeners: List[AuthEventListener] = list(listeners or [log_authentication_event])
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    def add_listener(self, listener: AuthEventListener) -> None:
        self._listeners.append(listener)

    def publish(
        self,
        username: str,
        event_type: AuthEventType,
        message: str = "",
        ip_address: Optional[str] = None,
    ) -> None:
        """Queue an event for the listeners and return immediately."""
        event = AuthenticationEvent(
            username=username or "unknown",
            event_type=event_type,
            message=message,
            ip_address=ip_address,
        )
        try:
            self._get_executor().submit(self._dispatch, event)
        except RuntimeError:
            # Executor already shut down (application stopping)
            logger.debug(f"Dropped {event.event_type.value} event for {event.username}: publisher is closed")

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker; with wait=True every queued event is delivered first."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="auth-events")
            return self._executor

    def _dispatch(self, event: AuthenticationEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.error(
                    f"Audit listener failed for {event.event_type.value} event of {event.username}",
                    exc_info=True,
                )


# Global publisher instance
_publisher: Optional[AuthEventPublisher] = None


def get_event_publisher() -> AuthEventPublisher:
    """Get or create the global audit event publisher."""
    global _publisher
    if _publisher is None:
        _publisher = AuthEventPublisher()
    return _publisher


def shutdown_event_publisher() -> None:
    global _publisher
    if _publisher is not None:
        _publisher.shutdown(wait=True)
        _publisher = None
