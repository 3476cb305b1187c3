import os
from typing import Any, List

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


def _split_list(value: Any) -> List[str]:
    if not value or value is True:
        return []
    return [item.strip() for item in str(value).split(",") if item.strip()]


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Comma separated namespaces the operator must never reconcile
DENY_LIST = _split_list(_getenv("DENY_LIST", ""))

#: Annotation that suppresses reconciliation when set to "true"
IGNORE_ANNOTATION = str(_getenv("IGNORE_ANNOTATION", "starrocks.com/ignored"))

#: Seconds between periodic reconcile passes
RECONCILE_INTERVAL_SECONDS = float(_getenv("RECONCILE_INTERVAL_SECONDS", 30))

#: Delay used when a pass asks to be requeued
REQUEUE_DELAY_SECONDS = float(_getenv("REQUEUE_DELAY_SECONDS", 5))

#: Attempts for optimistic-concurrency writes before giving up
CONFLICT_RETRY_ATTEMPTS = int(_getenv("CONFLICT_RETRY_ATTEMPTS", 5))

#: First backoff delay after a write conflict
CONFLICT_RETRY_BASE_DELAY_SECONDS = float(_getenv("CONFLICT_RETRY_BASE_DELAY_SECONDS", 0.01))

#: Backoff ceiling for write conflicts
CONFLICT_RETRY_MAX_DELAY_SECONDS = float(_getenv("CONFLICT_RETRY_MAX_DELAY_SECONDS", 1.0))

#: Per-hook timeout when the tier spec does not set one
HOOK_TIMEOUT_SECONDS = float(_getenv("HOOK_TIMEOUT_SECONDS", 300))

#: Attempts per upgrade hook
HOOK_MAX_RETRIES = int(_getenv("HOOK_MAX_RETRIES", 3))

#: Seconds between hook attempts
HOOK_RETRY_DELAY_SECONDS = float(_getenv("HOOK_RETRY_DELAY_SECONDS", 5))

#: FE MySQL protocol port used when the FE service has no "query" port
FE_QUERY_PORT = int(_getenv("FE_QUERY_PORT", 9030))

#: FE user for administrative statements
FE_USER = str(_getenv("FE_USER", "root"))

#: FE password for administrative statements
FE_PASSWORD = str(_getenv("FE_PASSWORD", ""))

#: Cluster DNS suffix
SERVICE_DOMAIN_SUFFIX = str(_getenv("SERVICE_DOMAIN_SUFFIX", "cluster.local"))

#: Platform version override (e.g. v1.27.3); empty means ask the API server
KUBERNETES_VERSION = str(_getenv("KUBERNETES_VERSION", ""))

#: Allow scaling a stateful tier from more than one replica down to one
ENABLE_SCALE_TO_ONE = bool(_getenv("ENABLE_SCALE_TO_ONE", False))

#: Maximum concurrent kopf workers
WORKER_LIMIT = int(_getenv("WORKER_LIMIT", 4))

#: Port of the Prometheus metrics endpoint
METRICS_PORT = int(_getenv("METRICS_PORT", 8000))


class Settings:
    """Operator settings"""

    deny_list: List[str] = DENY_LIST
    ignore_annotation: str = IGNORE_ANNOTATION
    reconcile_interval_seconds: float = RECONCILE_INTERVAL_SECONDS
    requeue_delay_seconds: float = REQUEUE_DELAY_SECONDS
    conflict_retry_attempts: int = CONFLICT_RETRY_ATTEMPTS
    conflict_retry_base_delay_seconds: float = CONFLICT_RETRY_BASE_DELAY_SECONDS
    conflict_retry_max_delay_seconds: float = CONFLICT_RETRY_MAX_DELAY_SECONDS
    hook_timeout_seconds: float = HOOK_TIMEOUT_SECONDS
    hook_max_retries: int = HOOK_MAX_RETRIES
    hook_retry_delay_seconds: float = HOOK_RETRY_DELAY_SECONDS
    fe_query_port: int = FE_QUERY_PORT
    fe_user: str = FE_USER
    fe_password: str = FE_PASSWORD
    service_domain_suffix: str = SERVICE_DOMAIN_SUFFIX
    kubernetes_version: str = KUBERNETES_VERSION
    enable_scale_to_one: bool = ENABLE_SCALE_TO_ONE
    worker_limit: int = WORKER_LIMIT
    metrics_port: int = METRICS_PORT

    def __init__(
        self,
        *args,
        deny_list: List[str] = None,
        ignore_annotation: str = None,
        reconcile_interval_seconds: float = None,
        requeue_delay_seconds: float = None,
        conflict_retry_attempts: int = None,
        conflict_retry_base_delay_seconds: float = None,
        conflict_retry_max_delay_seconds: float = None,
        hook_timeout_seconds: float = None,
        hook_max_retries: int = None,
        hook_retry_delay_seconds: float = None,
        fe_query_port: int = None,
        fe_user: str = None,
        fe_password: str = None,
        service_domain_suffix: str = None,
        kubernetes_version: str = None,
        enable_scale_to_one: bool = None,
        worker_limit: int = None,
        metrics_port: int = None,
        **kwargs,
    ):
        if deny_list is not None:
            self.deny_list = list(deny_list)

        if ignore_annotation is not None:
            self.ignore_annotation = ignore_annotation

        if reconcile_interval_seconds is not None:
            self.reconcile_interval_seconds = reconcile_interval_seconds

        if requeue_delay_seconds is not None:
            self.requeue_delay_seconds = requeue_delay_seconds

        if conflict_retry_attempts is not None:
            self.conflict_retry_attempts = conflict_retry_attempts

        if conflict_retry_base_delay_seconds is not None:
            self.conflict_retry_base_delay_seconds = conflict_retry_base_delay_seconds

        if conflict_retry_max_delay_seconds is not None:
            self.conflict_retry_max_delay_seconds = conflict_retry_max_delay_seconds

        if hook_timeout_seconds is not None:
            self.hook_timeout_seconds = hook_timeout_seconds

        if hook_max_retries is not None:
            self.hook_max_retries = hook_max_retries

        if hook_retry_delay_seconds is not None:
            self.hook_retry_delay_seconds = hook_retry_delay_seconds

        if fe_query_port is not None:
            self.fe_query_port = fe_query_port

        if fe_user is not None:
            self.fe_user = fe_user

        if fe_password is not None:
            self.fe_password = fe_password

        if service_domain_suffix is not None:
            self.service_domain_suffix = service_domain_suffix

        if kubernetes_version is not None:
            self.kubernetes_version = kubernetes_version

        if enable_scale_to_one is not None:
            self.enable_scale_to_one = enable_scale_to_one

        if worker_limit is not None:
            self.worker_limit = worker_limit

        if metrics_port is not None:
            self.metrics_port = metrics_port
