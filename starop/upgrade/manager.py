"""Upgrade safety state machine.

Each of the fe/be/cn tiers carries an ``upgradeState`` in its status. A new
image on a running tier moves it through::

    Detected -> Preparing -> Ready -> InProgress -> Completed
                    \\
                     -> Failed

Pre-upgrade hooks run while Preparing, and the orchestrator holds back all
forward convergence until every tier is past Preparing. Post-upgrade hooks
run best-effort once every upgrading tier has rolled out its target image.
"""
import logging
from logging import Logger
from typing import Any, Dict, List, Optional

from starop.common.models.tier import TierKind
from starop.resources.base import BaseResource
from starop.resources.cluster import StarRocksCluster
from starop.resources.registry import ApiRegistry
from starop.resources.status import WorkloadKind, rollout_complete
from starop.resources.templates import workload_image
from starop.sensors.base import OperatorSensor
from starop.types.models.cluster_resources import StarRocksClusterResources
from starop.types.models.status import ComponentPhase, UpgradePhase
from starop.types.settings import Settings
from starop.upgrade.custom_hooks import CommandExecutor, CustomHookRunner, ShellCommandExecutor
from starop.upgrade.hooks import FEConnection, Hook, HookExecutor, HookStage, hook_plan, uses_default_hooks
from starop.utils.errors import FEConnectionError, HookExecutionError, UpgradeFailedError
from starop.utils.helpers import now

module_logger = logging.getLogger(__name__)

UPGRADE_TIERS = (TierKind.FRONTEND, TierKind.BACKEND, TierKind.COMPUTE)
BLOCKING_PHASES = (UpgradePhase.DETECTED.value, UpgradePhase.PREPARING.value)


def _phase(state: Optional[Dict[str, Any]]) -> Optional[str]:
    return (state or {}).get("phase")


class UpgradeManager:
    """Runs one step of the upgrade state machine per reconcile pass."""

    def __init__(
        self,
        registry: ApiRegistry,
        conf: Settings,
        sensor: OperatorSensor,
        hook_executor: HookExecutor = None,
        command_executor: CommandExecutor = None,
        logger: Logger = None,
    ):
        self.registry = registry
        self.conf = conf
        self.sensor = sensor
        self.logger = logger or module_logger
        self.hook_executor = hook_executor or HookExecutor(conf, self.logger)
        self.command_executor = command_executor or ShellCommandExecutor(logger=self.logger)

    @staticmethod
    def should_block_forward_convergence(sr_cluster: StarRocksCluster) -> bool:
        return any(_phase(sr_cluster.upgrade_state(tier)) in BLOCKING_PHASES for tier in UPGRADE_TIERS)

    def tiers_in(self, sr_cluster: StarRocksCluster, *phases: UpgradePhase) -> List[TierKind]:
        values = {p.value for p in phases}
        return [t for t in UPGRADE_TIERS if _phase(sr_cluster.upgrade_state(t)) in values]

    async def reconcile(self, sr_cluster: StarRocksCluster) -> bool:
        """Advance the upgrade of ``sr_cluster``. Returns True when a requeue is wanted.

        Raises ``UpgradeFailedError`` while a failed upgrade is still the
        desired one.
        """
        if sr_cluster.tier_spec(TierKind.FRONTEND) is None:
            return False
        self.check_failed(sr_cluster)

        if self.tiers_in(sr_cluster, UpgradePhase.DETECTED, UpgradePhase.PREPARING):
            return await self.prepare(sr_cluster)

        ready = self.tiers_in(sr_cluster, UpgradePhase.READY)
        if ready:
            for tier in ready:
                self.transition(sr_cluster, tier, UpgradePhase.IN_PROGRESS, "Pre-upgrade hooks completed, rolling out")
            return False

        upgrading = self.tiers_in(sr_cluster, UpgradePhase.IN_PROGRESS)
        if upgrading:
            if await self.rolled_out(sr_cluster, upgrading):
                await self.finish(sr_cluster, upgrading)
            return False

        return await self.detect(sr_cluster)

    def check_failed(self, sr_cluster: StarRocksCluster) -> None:
        for tier in self.tiers_in(sr_cluster, UpgradePhase.FAILED):
            state = sr_cluster.upgrade_state(tier)
            spec = sr_cluster.tier_spec(tier)
            if spec is not None and spec.image == state.get("targetVersion"):
                raise UpgradeFailedError(state.get("reason") or f"{tier.value} upgrade failed")
            self.logger.info(f"{tier.value} target image changed since the failed upgrade, resetting")
            sr_cluster.set_upgrade_state(tier, None)

    async def fetch_workloads(self, sr_cluster: StarRocksCluster, tiers) -> Dict[TierKind, Any]:
        reader = BaseResource(sr_cluster.name, sr_cluster.namespace, "", None)
        workloads = {}
        for tier in tiers:
            workloads[tier] = await reader.fetch_stateful_set(
                self.registry.apps_v1_api,
                StarRocksClusterResources.component_name(sr_cluster.name, tier),
                sr_cluster.namespace,
            )
        return workloads

    async def detect(self, sr_cluster: StarRocksCluster) -> bool:
        candidates = []
        for tier in UPGRADE_TIERS:
            spec = sr_cluster.tier_spec(tier)
            status = sr_cluster.tier_status(tier) or {}
            if spec is None or status.get("phase") != ComponentPhase.RUNNING.value:
                continue
            candidates.append(tier)
        if not candidates:
            return False
        workloads = await self.fetch_workloads(sr_cluster, candidates)
        detected = False
        for tier in candidates:
            current = workload_image(workloads[tier], tier.container_name)
            target = sr_cluster.tier_spec(tier).image
            if not current or current == target:
                continue
            self.logger.info(f"{tier.value} upgrade detected: {current} -> {target}")
            state = {
                "phase": UpgradePhase.DETECTED.value,
                "reason": "Upgrade detected, preparing to execute pre-upgrade hooks",
                "targetVersion": target,
                "currentVersion": current,
                "hooksExecuted": [],
                "startTime": now(),
            }
            previous = _phase(sr_cluster.upgrade_state(tier))
            sr_cluster.set_upgrade_state(tier, state)
            self.sensor.on_upgrade_phase_change(
                sr_cluster.name, sr_cluster.namespace, tier.value, previous, UpgradePhase.DETECTED.value
            )
            detected = True
        return detected

    async def prepare(self, sr_cluster: StarRocksCluster) -> bool:
        for tier in self.tiers_in(sr_cluster, UpgradePhase.DETECTED):
            self.transition(sr_cluster, tier, UpgradePhase.PREPARING, "Executing pre-upgrade hooks")
        try:
            conn = self.hook_executor.connection_for(
                sr_cluster.name, sr_cluster.namespace, sr_cluster.tier_spec(TierKind.FRONTEND)
            )
        except ValueError as e:
            self.fail(sr_cluster, str(e))
            raise UpgradeFailedError(str(e)) from e

        for tier in self.tiers_in(sr_cluster, UpgradePhase.PREPARING):
            try:
                await self.run_hooks(sr_cluster, tier, HookStage.PRE, conn)
            except FEConnectionError as e:
                self.logger.info(f"Frontend not reachable for pre-upgrade hooks, will retry: {e}")
                return True
            except HookExecutionError as e:
                reason = f"Critical pre-upgrade hook {e.hook_name} failed"
                self.fail(sr_cluster, reason)
                raise UpgradeFailedError(reason) from e
            self.transition(sr_cluster, tier, UpgradePhase.READY, "Pre-upgrade hooks completed")
        return True

    async def rolled_out(self, sr_cluster: StarRocksCluster, tiers: List[TierKind]) -> bool:
        workloads = await self.fetch_workloads(sr_cluster, tiers)
        for tier in tiers:
            sts = workloads[tier]
            target = sr_cluster.upgrade_state(tier).get("targetVersion")
            if workload_image(sts, tier.container_name) != target:
                return False
            if not rollout_complete(WorkloadKind.STATEFUL_SET, sts):
                return False
        return True

    async def finish(self, sr_cluster: StarRocksCluster, tiers: List[TierKind]) -> None:
        conn = None
        try:
            conn = self.hook_executor.connection_for(
                sr_cluster.name, sr_cluster.namespace, sr_cluster.tier_spec(TierKind.FRONTEND)
            )
        except ValueError as e:
            self.logger.warning(f"Skipping post-upgrade hooks: {e}")
        for tier in tiers:
            if conn is not None:
                try:
                    await self.run_hooks(sr_cluster, tier, HookStage.POST, conn)
                except (FEConnectionError, HookExecutionError) as e:
                    self.logger.warning(f"Post-upgrade hooks for {tier.value} failed: {e}")
            state = sr_cluster.upgrade_state(tier)
            state["completionTime"] = now()
            self.transition(sr_cluster, tier, UpgradePhase.COMPLETED, "Upgrade completed successfully")

    async def run_hooks(
        self, sr_cluster: StarRocksCluster, tier: TierKind, stage: HookStage, conn: FEConnection
    ) -> None:
        """Run the hooks of one tier and stage in declared order.

        Hooks already recorded in ``hooksExecuted`` are skipped. A critical
        failure raises ``HookExecutionError``; others are logged and skipped.
        """
        spec = sr_cluster.tier_spec(tier)
        config = spec.upgrade_hooks if spec is not None else None
        plan: List[Hook] = hook_plan(config, stage)
        custom = None if uses_default_hooks(config) else config.custom
        if not plan and custom is None:
            return
        state = sr_cluster.upgrade_state(tier)
        executed = state.setdefault("hooksExecuted", [])
        timeout = (config.timeout_seconds if config else None) or self.conf.hook_timeout_seconds

        await self.hook_executor.ensure_ready(conn)
        for hook in plan:
            if hook.name in executed:
                continue
            self.logger.info(f"Executing {stage.value}-upgrade hook {hook.name} for {tier.value}")
            try:
                await self.hook_executor.execute(conn, hook, timeout)
            except HookExecutionError as e:
                self._hook_event(sr_cluster, hook.name, stage, False)
                if e.critical:
                    raise
                self.logger.warning(f"Non-critical hook {hook.name} failed, continuing")
                continue
            self._hook_event(sr_cluster, hook.name, stage, True)
            executed.append(hook.name)

        if custom is not None:
            runner = CustomHookRunner(
                sr_cluster.name,
                sr_cluster.namespace,
                self.registry.core_v1_api,
                self.command_executor,
                self.conf.hook_max_retries,
                self.conf.hook_retry_delay_seconds,
                self.logger,
            )
            hook = runner.hook_for(stage)
            if hook.name in executed:
                return
            try:
                await runner.run(custom, stage, conn, timeout, hook)
            except HookExecutionError as e:
                self._hook_event(sr_cluster, hook.name, stage, False)
                if e.critical:
                    raise
                self.logger.warning(f"Custom {stage.value}-upgrade hook failed, continuing")
                return
            self._hook_event(sr_cluster, hook.name, stage, True)
            executed.append(hook.name)

    def transition(self, sr_cluster: StarRocksCluster, tier: TierKind, phase: UpgradePhase, reason: str) -> None:
        state = sr_cluster.upgrade_state(tier)
        previous = state.get("phase")
        state["phase"] = phase.value
        state["reason"] = reason
        if previous != phase.value:
            self.logger.info(f"{tier.value} upgrade: {previous} -> {phase.value}")
            self.sensor.on_upgrade_phase_change(
                sr_cluster.name, sr_cluster.namespace, tier.value, previous, phase.value
            )

    def fail(self, sr_cluster: StarRocksCluster, reason: str) -> None:
        for tier in self.tiers_in(sr_cluster, UpgradePhase.DETECTED, UpgradePhase.PREPARING):
            self.transition(sr_cluster, tier, UpgradePhase.FAILED, reason)

    def _hook_event(self, sr_cluster: StarRocksCluster, hook_name: str, stage: HookStage, success: bool) -> None:
        self.sensor.on_hook_executed(sr_cluster.name, sr_cluster.namespace, hook_name, stage.value, success)
