import kopf
from logging import Logger
from kubernetes_asyncio.client import ApiException
from starop.resources.cluster import StarRocksCluster
from starop.resources.orchestrator import Orchestrator
from starop.types.settings import Settings
from starop.utils.errors import UpgradeFailedError, convert_api_exception

CLUSTER_KIND = StarRocksCluster.KIND
CLUSTER_RESOURCE = (StarRocksCluster.GROUP, StarRocksCluster.VERSION, StarRocksCluster.PLURAL)

TRUTHY = ("true", "1", "yes", "True", "Yes", "YES")


def is_managed(annotations, namespace, memo: kopf.Memo = None, **_) -> bool:
    """Filter out ignored objects and objects in denied namespaces."""
    conf: Settings = getattr(memo, "conf", None) or Settings()
    if (annotations or {}).get(conf.ignore_annotation) in TRUTHY:
        return False
    return namespace not in conf.deny_list


async def reconcile(
    name,
    namespace,
    meta,
    memo: kopf.Memo,
    logger: Logger,
    trigger_source: str = "manual",
    **kwargs,
):
    """Run one convergence pass for the StarRocksCluster."""
    sensor = memo.sensor
    generation = meta.get("generation", 0)
    sensor_state = sensor.on_reconcile_start(name, namespace, generation, trigger_source)

    success = True
    error = None
    try:
        logger.debug(f"Reconciling {CLUSTER_KIND}/{name} in {namespace} namespace.")
        orchestrator = Orchestrator(memo.registry, memo.conf, sensor, logger)
        result = await orchestrator.reconcile(name, namespace)
        logger.debug(f"Reconciled {CLUSTER_KIND}/{name} in {namespace} namespace.")
    except ApiException as e:
        success = False
        error = e
        logger.error(f"Kubernetes API error during reconciliation: {e.status} {e.reason}")
        convert_api_exception(e)
    except UpgradeFailedError as e:
        success = False
        error = e
        # terminal until the target image changes
        logger.error(f"Upgrade of {CLUSTER_KIND}/{name} failed: {e}")
        raise kopf.PermanentError(str(e))
    except Exception as e:
        success = False
        error = e
        logger.error(f"Unexpected error during reconciliation: {e}")
        logger.exception(e)
        raise kopf.TemporaryError(str(e), delay=memo.conf.requeue_delay_seconds)
    finally:
        sensor.on_reconcile_complete(name, namespace, sensor_state, success, error)

    if result.requeue:
        raise kopf.TemporaryError(
            f"{CLUSTER_KIND}/{name} requeued", delay=result.delay or memo.conf.requeue_delay_seconds
        )


@kopf.on.resume(*CLUSTER_RESOURCE, when=is_managed)
async def on_resume(**kwargs):
    """Converge clusters found at operator startup."""
    await reconcile(trigger_source="resume", **kwargs)


@kopf.on.create(*CLUSTER_RESOURCE, when=is_managed)
async def on_create(**kwargs):
    """Creates StarRocksCluster resources."""
    await reconcile(trigger_source="create", **kwargs)


@kopf.on.update(*CLUSTER_RESOURCE, field="spec", when=is_managed)
async def on_spec_update(**kwargs):
    """Converge after a spec change."""
    await reconcile(trigger_source="update", **kwargs)


@kopf.timer(*CLUSTER_RESOURCE, initial_delay=5.0, interval=Settings.reconcile_interval_seconds, when=is_managed)
async def periodic_reconciliation(**kwargs):
    """Catch drift and progress rollouts between events."""
    await reconcile(trigger_source="timer", **kwargs)


@kopf.on.delete(*CLUSTER_RESOURCE)
async def on_delete(name, namespace, logger: Logger, **kwargs):
    """Children carry owner references; garbage collection removes them."""
    logger.info(f"{CLUSTER_KIND}/{name} in {namespace} deleted, children are garbage collected")
