"""Administrative SQL hooks run against the frontend around an upgrade.

Every hook opens its own short lived connection to the frontend service.
PyMySQL is blocking, so each call runs in a worker thread under an asyncio
timeout. Hook statements are never logged.
"""
import asyncio
import logging
import re
from enum import Enum
from logging import Logger
from typing import Dict, List, NamedTuple, Optional

import pymysql

from starop.common.models.tier import TierKind
from starop.types.models.cluster_resources import StarRocksClusterResources
from starop.types.models.component_spec import UpgradeHooks
from starop.types.settings import Settings
from starop.utils.errors import FEConnectionError, HookExecutionError

module_logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10
READY_TIMEOUT_SECONDS = 10
READY_QUERY = "SELECT 1"
QUERY_PORT_NAME = "query"

_CLUSTER_NAME = re.compile(r"^[a-z0-9.-]{1,253}$")
_NAMESPACE = re.compile(r"^[a-z0-9-]{1,63}$")


class HookStage(str, Enum):
    PRE = "pre"
    POST = "post"

    @property
    def script_function(self) -> str:
        return f"{self.value}_upgrade"


class Hook(NamedTuple):
    name: str
    command: str
    critical: bool


_DISABLE_SCHEDULING = 'ADMIN SET FRONTEND CONFIG ("tablet_sched_max_scheduling_tablets" = "0")'
_ENABLE_SCHEDULING = 'ADMIN SET FRONTEND CONFIG ("tablet_sched_max_scheduling_tablets" = "2000")'
_DISABLE_BALANCE = 'ADMIN SET FRONTEND CONFIG ("disable_balance" = "true")'
_ENABLE_BALANCE = 'ADMIN SET FRONTEND CONFIG ("disable_balance" = "false")'

#: Hooks selectable by name through ``upgradeHooks.predefined``
PREDEFINED_HOOKS: Dict[HookStage, List[Hook]] = {
    HookStage.PRE: [
        Hook("disable-tablet-clone", _DISABLE_SCHEDULING, True),
        Hook("disable-balancer", _DISABLE_BALANCE, True),
    ],
    HookStage.POST: [
        Hook("enable-tablet-clone", _ENABLE_SCHEDULING, False),
        Hook("enable-balancer", _ENABLE_BALANCE, False),
    ],
}

#: Hooks run for tiers without any hook configuration
DEFAULT_HOOKS: Dict[HookStage, List[Hook]] = {
    HookStage.PRE: [
        Hook("disable-tablet-scheduling", _DISABLE_SCHEDULING, True),
        Hook("disable-load-balancer", _DISABLE_BALANCE, True),
    ],
    HookStage.POST: [
        Hook("enable-tablet-scheduling", _ENABLE_SCHEDULING, False),
        Hook("enable-load-balancer", _ENABLE_BALANCE, False),
    ],
}


def uses_default_hooks(config: Optional[UpgradeHooks]) -> bool:
    return config is None or (not config.predefined and config.custom is None)


def hook_plan(config: Optional[UpgradeHooks], stage: HookStage) -> List[Hook]:
    """SQL hooks for one stage, in declared order. Unknown names are skipped."""
    if uses_default_hooks(config):
        return list(DEFAULT_HOOKS[stage])
    by_name = {hook.name: hook for hook in PREDEFINED_HOOKS[stage]}
    known = {hook.name for hooks in PREDEFINED_HOOKS.values() for hook in hooks}
    plan = []
    for name in config.predefined or []:
        if name in by_name:
            plan.append(by_name[name])
        elif name not in known:
            module_logger.warning(f"Unknown predefined upgrade hook {name!r} ignored")
    return plan


def validate_identifiers(cluster_name: str, namespace: str) -> None:
    if not cluster_name or not _CLUSTER_NAME.match(cluster_name):
        raise ValueError(f"invalid cluster name: {cluster_name!r}")
    if not namespace or not _NAMESPACE.match(namespace):
        raise ValueError(f"invalid namespace: {namespace!r}")


class FEConnection(NamedTuple):
    """Where and as whom the frontend is reached."""

    host: str
    port: int
    user: str
    password: str


class HookExecutor:
    """Runs SQL hooks on the frontend with per hook timeout and retries."""

    def __init__(self, conf: Settings, logger: Logger = None):
        self.conf = conf
        self.timeout = conf.hook_timeout_seconds
        self.max_retries = max(1, conf.hook_max_retries)
        self.retry_delay = conf.hook_retry_delay_seconds
        self.logger = logger or module_logger

    def connection_for(self, cluster_name: str, namespace: str, fe_spec) -> FEConnection:
        validate_identifiers(cluster_name, namespace)
        host = StarRocksClusterResources.qualified_service_name(
            cluster_name, namespace, TierKind.FRONTEND, self.conf.service_domain_suffix
        )
        port = self.conf.fe_query_port
        service = fe_spec.service if fe_spec is not None else None
        for service_port in (service.ports if service else None) or []:
            if service_port.name == QUERY_PORT_NAME and service_port.port is not None:
                if not 1 <= service_port.port <= 65535:
                    raise ValueError(f"invalid query port: {service_port.port}")
                port = service_port.port
                break
        return FEConnection(host, port, self.conf.fe_user, self.conf.fe_password)

    def _execute(self, conn: FEConnection, statement: str, timeout: float):
        connection = pymysql.connect(
            host=conn.host,
            port=conn.port,
            user=conn.user,
            password=conn.password,
            connect_timeout=CONNECT_TIMEOUT_SECONDS,
            read_timeout=int(timeout),
            write_timeout=int(timeout),
            autocommit=True,
        )
        try:
            with connection.cursor() as cursor:
                cursor.execute(statement)
                return cursor.fetchone()
        finally:
            connection.close()

    async def run_statement(self, conn: FEConnection, statement: str, timeout: float = None):
        timeout = timeout or self.timeout
        return await asyncio.wait_for(
            asyncio.to_thread(self._execute, conn, statement, timeout), timeout=timeout
        )

    async def ensure_ready(self, conn: FEConnection) -> None:
        """Check the frontend answers queries. Any failure is transient."""
        try:
            row = await self.run_statement(conn, READY_QUERY, READY_TIMEOUT_SECONDS)
        except (pymysql.MySQLError, OSError, asyncio.TimeoutError) as e:
            raise FEConnectionError(f"frontend {conn.host}:{conn.port} not ready: {e}") from e
        if not row or row[0] != 1:
            raise FEConnectionError(f"frontend {conn.host}:{conn.port} returned unexpected result")
        self.logger.info(f"Frontend {conn.host}:{conn.port} is ready to accept commands")

    async def execute(self, conn: FEConnection, hook: Hook, timeout: float = None) -> None:
        """Run one hook, retrying failed attempts. Raises ``HookExecutionError``."""
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                self.logger.info(f"Retrying hook {hook.name} (attempt {attempt}/{self.max_retries})")
                await asyncio.sleep(self.retry_delay)
            try:
                await self.run_statement(conn, hook.command, timeout)
            except (pymysql.MySQLError, OSError, asyncio.TimeoutError) as e:
                last_error = e
                self.logger.warning(f"Hook {hook.name} attempt {attempt} failed: {type(e).__name__}")
                continue
            self.logger.info(f"Hook {hook.name} completed")
            return
        raise HookExecutionError(
            hook.name,
            hook.critical,
            f"failed after {self.max_retries} attempts: {type(last_error).__name__}",
            cause=last_error,
        )
