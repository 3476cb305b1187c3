"""User supplied upgrade hook scripts.

A tier may point ``upgradeHooks.custom`` at a config map holding a bash
script that defines ``pre_upgrade()`` and/or ``post_upgrade()``. The script
is written to a private temp file, sourced, and the stage function called
with the frontend coordinates in its environment. Script bodies are only
ever logged by digest.
"""
import asyncio
import hashlib
import logging
import os
import re
import tempfile
from logging import Logger
from typing import Dict, Mapping, Optional

from kubernetes_asyncio.client import CoreV1Api

from starop.resources.base import BaseResource
from starop.types.models.component_spec import CustomHookConfig
from starop.upgrade.hooks import FEConnection, Hook, HookStage
from starop.utils.errors import HookExecutionError

module_logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_KEY = "hooks.sh"

#: Variables inherited from the operator process; everything else is dropped
INHERITED_ENV = ("PATH", "HOME", "LANG", "LC_ALL", "TZ")

_RESOURCE_NAME = re.compile(r"^[a-z0-9.-]{1,253}$")


class CommandExecutor:
    """Runs one function of a shell script. Swappable for tests."""

    async def run_script(
        self, script: str, function: str, env: Mapping[str, str], timeout: float
    ) -> None:
        raise NotImplementedError()


class ShellCommandExecutor(CommandExecutor):
    """Executes scripts with the local ``bash``."""

    def __init__(self, shell: str = "bash", logger: Logger = None):
        self.shell = shell
        self.logger = logger or module_logger

    async def run_script(
        self, script: str, function: str, env: Mapping[str, str], timeout: float
    ) -> None:
        fd, path = tempfile.mkstemp(prefix="sr-hook-", suffix=".sh")
        try:
            os.chmod(path, 0o700)
            with os.fdopen(fd, "w") as f:
                f.write(script)
            proc = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                f"source {path} && {function}",
                env=dict(env),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            try:
                output, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise RuntimeError(f"{function} timed out after {timeout}s")
            self.logger.debug(f"{function} output: {output.decode(errors='replace')}")
            if proc.returncode != 0:
                raise RuntimeError(f"{function} exited with status {proc.returncode}")
        finally:
            os.remove(path)


def script_digest(script: str) -> str:
    return hashlib.sha256(script.encode("utf-8")).hexdigest()


def validate_script(script: str, function: str) -> None:
    if not script:
        raise ValueError("script content is empty")
    if f"{function}()" not in script:
        raise ValueError(f"script must define {function}()")


def hook_env(conn: FEConnection, cluster_name: str, namespace: str) -> Dict[str, str]:
    env = {key: os.environ[key] for key in INHERITED_ENV if key in os.environ}
    env.update(
        SR_FE_HOST=conn.host,
        SR_FE_PORT=str(conn.port),
        SR_FE_USER=conn.user,
        SR_CLUSTER_NAME=cluster_name,
        SR_NAMESPACE=namespace,
    )
    return env


class CustomHookRunner(BaseResource):
    """Loads a hook script from its config map and runs one stage of it."""

    def __init__(
        self,
        cluster: str,
        namespace: str,
        core_v1_api: CoreV1Api,
        executor: CommandExecutor,
        max_retries: int = 3,
        retry_delay: float = 5,
        logger: Logger = None,
    ):
        super().__init__(cluster, namespace, cluster, None)
        self.core_v1_api = core_v1_api
        self.executor = executor
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.logger = logger or module_logger

    @classmethod
    def hook_for(cls, stage: HookStage) -> Hook:
        """The bookkeeping entry of a custom hook. Pre stage failures are critical."""
        return Hook(f"custom-{stage.value}", stage.script_function, stage is HookStage.PRE)

    async def load_script(self, config: CustomHookConfig) -> str:
        name = config.config_map_name
        if not name or not _RESOURCE_NAME.match(name) or ".." in name:
            raise ValueError(f"invalid config map name: {name!r}")
        config_map = await self.fetch_config_map(self.core_v1_api, name, self.namespace)
        if config_map is None:
            raise ValueError(f"config map {name} not found")
        key = config.script_key or DEFAULT_SCRIPT_KEY
        script = (config_map.data or {}).get(key)
        if script is None:
            raise ValueError(f"script key {key!r} not found in config map {name}")
        return script

    async def run(
        self,
        config: CustomHookConfig,
        stage: HookStage,
        conn: FEConnection,
        timeout: float,
        hook: Optional[Hook] = None,
    ) -> None:
        hook = hook or self.hook_for(stage)
        function = stage.script_function
        try:
            script = await self.load_script(config)
            validate_script(script, function)
        except ValueError as e:
            raise HookExecutionError(hook.name, hook.critical, str(e), cause=e) from e

        self.logger.info(
            f"Running custom hook {function} from config map {config.config_map_name} "
            f"(sha256 {script_digest(script)})"
        )
        env = hook_env(conn, self.cluster, self.namespace)
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                self.logger.info(f"Retrying custom hook {function} (attempt {attempt}/{self.max_retries})")
                await asyncio.sleep(self.retry_delay)
            try:
                await self.executor.run_script(script, function, env, timeout)
            except (RuntimeError, OSError) as e:
                last_error = e
                self.logger.warning(f"Custom hook {function} attempt {attempt} failed: {e}")
                continue
            self.logger.info(f"Custom hook {function} completed")
            return
        raise HookExecutionError(
            hook.name, hook.critical, f"failed after {self.max_retries} attempts: {last_error}", cause=last_error
        )
