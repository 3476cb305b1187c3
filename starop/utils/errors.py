import json
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import kopf
import kubernetes_asyncio

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ALREADY_EXISTS = "alreadyexists"
_NOT_FOUND = "notfound"
_CONFLICT = "conflict"


def _reason(ex: kubernetes_asyncio.client.ApiException) -> str:
    try:
        err = json.loads(ex.body) if ex.body else {}
    except (json.JSONDecodeError, TypeError):
        return ""
    return str(err.get("reason", "")).lower()


def already_exists_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 409 and _reason(ex) == _ALREADY_EXISTS


def not_found_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 404 or _reason(ex) == _NOT_FOUND


def conflict_error(ex: kubernetes_asyncio.client.ApiException) -> bool:
    """True for optimistic-concurrency failures (stale resourceVersion)."""
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 409 and _reason(ex) in ("", _CONFLICT)


def convert_api_exception(ex: kubernetes_asyncio.client.ApiException, permanent: bool = None):
    """
    Convert kubernetes ApiException to a Kopf-friendly exception.

    Args:
        ex: The ApiException to convert
        permanent: If True, raises PermanentError (won't retry). If False, raises TemporaryError (will retry).
                   If None, automatically determines based on status code.

    Raises:
        kopf.TemporaryError or kopf.PermanentError with serializable error details
    """
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        raise ex

    error_msg = f"Kubernetes API error ({ex.status}): {ex.reason}"
    try:
        if ex.body:
            body = json.loads(ex.body)
            if "message" in body:
                error_msg = f"{error_msg} - {body['message']}"
    except (json.JSONDecodeError, AttributeError, TypeError):
        pass

    # 4xx errors (except 408, 409, 429) do not get better by retrying
    if permanent is None:
        is_permanent = 400 <= ex.status < 500 and ex.status not in [408, 409, 429]
    else:
        is_permanent = permanent

    if is_permanent:
        raise kopf.PermanentError(error_msg)
    else:
        raise kopf.TemporaryError(error_msg, delay=30)


async def retry_on_conflict(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 5,
    base_delay: float = 0.01,
    max_delay: float = 1.0,
    description: str = "write",
) -> T:
    """Run a read-modify-write coroutine, retrying on 409 conflicts.

    A lost create race (AlreadyExists) is retried the same way, so the next
    attempt reads the object and updates it instead.

    ``fn`` must re-read the object on every call so each attempt carries
    the latest resourceVersion. The delay doubles per attempt (with jitter)
    and is capped at ``max_delay``. The last conflict is re-raised.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except kubernetes_asyncio.client.ApiException as ex:
            retryable = conflict_error(ex) or already_exists_error(ex)
            if not retryable or attempt >= attempts:
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            delay = delay * (1 + random.random() * 0.1)
            logger.debug(
                f"Conflict on {description} (attempt {attempt}/{attempts}), retrying in {delay:.3f}s"
            )
            await asyncio.sleep(delay)


class StarRocksOperatorError(Exception):
    """Base class for errors raised by the operator."""


class FEConnectionError(StarRocksOperatorError):
    """The frontend tier could not be reached. Always transient."""


class HookExecutionError(StarRocksOperatorError):
    """An upgrade hook failed after exhausting its retries."""

    def __init__(self, hook_name: str, critical: bool, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"hook {hook_name} failed: {message}")
        self.hook_name = hook_name
        self.critical = critical
        self.cause = cause


class UpgradeFailedError(StarRocksOperatorError):
    """A terminal upgrade failure. Cleared only by changing the desired image."""


class DisasterRecoveryPending(StarRocksOperatorError):
    """Disaster recovery is waiting on an external precondition."""
