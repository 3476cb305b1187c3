"""Shared fixtures: an in-memory stand-in for the Kubernetes API.

The fake keeps typed kubernetes_asyncio models for built-in kinds and plain
dicts for custom objects, bumps ``resourceVersion`` on every write and
records each write so tests can assert on API traffic.
"""

import copy
import json
import re
from types import SimpleNamespace

import pytest
from unittest.mock import Mock
from kubernetes_asyncio.client import (
    ApiException,
    V1Container,
    V1EndpointAddress,
    V1EndpointSubset,
    V1Endpoints,
    V1LabelSelector,
    V1ObjectMeta,
    V1PersistentVolumeClaimList,
    V1PodList,
    V1PodSpec,
    V1PodTemplateSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1StorageClassList,
)

from starop.resources.cluster import StarRocksCluster
from starop.resources.registry import ApiRegistry
from starop.sensors.base import OperatorSensor
from starop.types.settings import Settings


def api_error(status: int, reason: str = "") -> ApiException:
    ex = ApiException(status=status, reason=reason)
    ex.body = json.dumps({"reason": reason, "message": reason})
    return ex


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class FakeKube:
    """Minimal object store implementing the calls the operator makes."""

    def __init__(self):
        self.objects = {}
        self.custom = {}
        self.pods = []
        self.storage_classes = {}
        self.writes = []
        self.platform = SimpleNamespace(major="1", minor="27")
        self._rv = 0

    # -- bookkeeping ---------------------------------------------------

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def get(self, kind: str, namespace: str, name: str):
        return self.objects.get((kind, namespace, name))

    def put(self, kind: str, obj):
        """Seed an object as if the API server already had it."""
        obj = copy.deepcopy(obj)
        obj.metadata.resource_version = self._next_rv()
        obj.metadata.generation = obj.metadata.generation or 1
        self.objects[(kind, obj.metadata.namespace, obj.metadata.name)] = obj
        return obj

    def writes_of(self, verb: str = None):
        return [w for w in self.writes if verb is None or w[0] == verb]

    # -- generic handlers ------------------------------------------------

    def _read(self, kind, name, namespace):
        obj = self.get(kind, namespace, name)
        if obj is None:
            raise api_error(404, "NotFound")
        return copy.deepcopy(obj)

    def _create(self, kind, namespace, body):
        key = (kind, namespace, body.metadata.name)
        if key in self.objects:
            raise api_error(409, "AlreadyExists")
        obj = copy.deepcopy(body)
        obj.metadata.namespace = namespace
        obj.metadata.resource_version = self._next_rv()
        obj.metadata.generation = 1
        self.objects[key] = obj
        self.writes.append(("create", kind, body.metadata.name))
        return obj

    def _patch(self, kind, name, namespace, ops):
        obj = self.get(kind, namespace, name)
        if obj is None:
            raise api_error(404, "NotFound")
        for op in ops:
            if op["path"] == "/metadata/resourceVersion":
                if op["value"] != obj.metadata.resource_version:
                    raise api_error(409, "Conflict")
                continue
            target = obj
            parts = op["path"].strip("/").split("/")
            for part in parts[:-1]:
                target = target[part] if isinstance(target, dict) else getattr(target, _snake(part))
            if isinstance(target, dict):
                target[parts[-1]] = copy.deepcopy(op["value"])
            else:
                setattr(target, _snake(parts[-1]), copy.deepcopy(op["value"]))
        obj.metadata.resource_version = self._next_rv()
        obj.metadata.generation = (obj.metadata.generation or 1) + 1
        self.writes.append(("patch", kind, name))
        return obj

    def _replace(self, kind, name, namespace, body):
        self.objects[(kind, namespace, name)] = copy.deepcopy(body)
        self.writes.append(("replace", kind, name))

    def _delete(self, kind, name, namespace, body=None):
        if self.objects.pop((kind, namespace, name), None) is None:
            raise api_error(404, "NotFound")
        self.writes.append(("delete", kind, name))

    # -- custom objects --------------------------------------------------

    def put_custom(self, plural: str, body: dict) -> dict:
        body = copy.deepcopy(body)
        body["metadata"]["resourceVersion"] = self._next_rv()
        self.custom[(plural, body["metadata"]["namespace"], body["metadata"]["name"])] = body
        return body

    def custom_object(self, plural, namespace, name):
        return self.custom.get((plural, namespace, name))

    async def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        obj = self.custom.get((plural, namespace, name))
        if obj is None:
            raise api_error(404, "NotFound")
        return copy.deepcopy(obj)

    async def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        key = (plural, namespace, body["metadata"]["name"])
        if key in self.custom:
            raise api_error(409, "AlreadyExists")
        obj = copy.deepcopy(body)
        obj["metadata"]["resourceVersion"] = self._next_rv()
        self.custom[key] = obj
        self.writes.append(("create", plural, body["metadata"]["name"]))

    async def _replace_custom(self, namespace, plural, name, body, subresource):
        key = (plural, namespace, name)
        live = self.custom.get(key)
        if live is None:
            raise api_error(404, "NotFound")
        rv = (body.get("metadata") or {}).get("resourceVersion")
        if rv is not None and rv != live["metadata"]["resourceVersion"]:
            raise api_error(409, "Conflict")
        obj = copy.deepcopy(live)
        if subresource == "status":
            obj["status"] = copy.deepcopy(body.get("status"))
        else:
            obj.update({k: copy.deepcopy(v) for k, v in body.items() if k != "status"})
        obj["metadata"]["resourceVersion"] = self._next_rv()
        self.custom[key] = obj
        self.writes.append(("replace" if subresource is None else f"replace-{subresource}", plural, name))

    async def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body):
        await self._replace_custom(namespace, plural, name, body, None)

    async def replace_namespaced_custom_object_status(self, group, version, namespace, plural, name, body):
        await self._replace_custom(namespace, plural, name, body, "status")

    async def delete_namespaced_custom_object(self, group, version, namespace, plural, name):
        if self.custom.pop((plural, namespace, name), None) is None:
            raise api_error(404, "NotFound")
        self.writes.append(("delete", plural, name))

    # -- pods, endpoints, version ----------------------------------------

    async def list_namespaced_pod(self, namespace, label_selector=None):
        wanted = dict(kv.split("=", 1) for kv in label_selector.split(",")) if label_selector else {}
        items = [
            copy.deepcopy(p)
            for p in self.pods
            if p.metadata.namespace == namespace
            and all((p.metadata.labels or {}).get(k) == v for k, v in wanted.items())
        ]
        return V1PodList(items=items)

    async def list_namespaced_persistent_volume_claim(self, namespace):
        items = [
            copy.deepcopy(obj)
            for (kind, ns, _), obj in sorted(self.objects.items(), key=lambda item: item[0])
            if kind == "PersistentVolumeClaim" and ns == namespace
        ]
        return V1PersistentVolumeClaimList(items=items)

    async def read_storage_class(self, name):
        if name not in self.storage_classes:
            raise api_error(404, "NotFound")
        return copy.deepcopy(self.storage_classes[name])

    async def list_storage_class(self):
        return V1StorageClassList(items=[copy.deepcopy(sc) for sc in self.storage_classes.values()])

    def set_endpoints_ready(self, namespace: str, name: str) -> None:
        self.objects[("Endpoints", namespace, name)] = V1Endpoints(
            metadata=V1ObjectMeta(name=name, namespace=namespace),
            subsets=[V1EndpointSubset(addresses=[V1EndpointAddress(ip="10.0.0.1")])],
        )

    async def get_code(self):
        return self.platform


def _bind(fake: FakeKube, kind: str, suffix: str):
    """Expose the generic handlers under the typed API method names."""
    async def read(name, namespace):
        return fake._read(kind, name, namespace)

    async def create(namespace, body):
        return fake._create(kind, namespace, body)

    async def patch(name, namespace, body):
        return fake._patch(kind, name, namespace, body)

    async def replace(name, namespace, body):
        return fake._replace(kind, name, namespace, body)

    async def delete(name, namespace, body=None):
        return fake._delete(kind, name, namespace, body)

    return {
        f"read_namespaced_{suffix}": read,
        f"create_namespaced_{suffix}": create,
        f"patch_namespaced_{suffix}": patch,
        f"replace_namespaced_{suffix}": replace,
        f"delete_namespaced_{suffix}": delete,
    }


@pytest.fixture
def kube():
    """An empty in-memory cluster."""
    return FakeKube()


@pytest.fixture
def registry(kube):
    """ApiRegistry whose typed APIs are backed by the fake."""
    apps = SimpleNamespace(
        **_bind(kube, "StatefulSet", "stateful_set"),
        **_bind(kube, "Deployment", "deployment"),
    )
    core = SimpleNamespace(
        **_bind(kube, "Service", "service"),
        **_bind(kube, "ConfigMap", "config_map"),
        **_bind(kube, "Endpoints", "endpoints"),
        **_bind(kube, "PersistentVolumeClaim", "persistent_volume_claim"),
        list_namespaced_pod=kube.list_namespaced_pod,
        list_namespaced_persistent_volume_claim=kube.list_namespaced_persistent_volume_claim,
    )
    registry = ApiRegistry(api_client=None)
    registry.apps_v1_api = apps
    registry.core_v1_api = core
    registry.custom_objects_api = kube
    registry.storage_v1_api = kube
    registry.version_api = kube
    return registry


@pytest.fixture
def conf():
    """Settings with retries and delays shrunk for tests."""
    return Settings(
        conflict_retry_attempts=3,
        conflict_retry_base_delay_seconds=0,
        conflict_retry_max_delay_seconds=0,
        hook_max_retries=2,
        hook_retry_delay_seconds=0,
        hook_timeout_seconds=5,
        requeue_delay_seconds=1,
        kubernetes_version="v1.27.3",
    )


@pytest.fixture
def sensor():
    """Sensor double recording every hook call."""
    return Mock(spec=OperatorSensor)


def _cluster_body(spec: dict, status: dict = None, name: str = "sr", namespace: str = "default") -> dict:
    body = {
        "apiVersion": f"{StarRocksCluster.GROUP}/{StarRocksCluster.VERSION}",
        "kind": StarRocksCluster.KIND,
        "metadata": {"name": name, "namespace": namespace, "uid": "uid-1", "generation": 1},
        "spec": spec,
    }
    if status is not None:
        body["status"] = status
    return body


@pytest.fixture
def cluster_body():
    """Factory for StarRocksCluster bodies."""
    return _cluster_body


@pytest.fixture
def fe_spec():
    return {"image": "starrocks/fe-ubuntu:3.2.0", "replicas": 3}


@pytest.fixture
def cn_spec():
    return {"image": "starrocks/cn-ubuntu:3.2.0", "replicas": 1}


def _stateful_set(name: str, image: str, container: str, namespace: str = "default", replicas: int = 1):
    return V1StatefulSet(
        metadata=V1ObjectMeta(name=name, namespace=namespace, annotations={}),
        spec=V1StatefulSetSpec(
            replicas=replicas,
            selector=V1LabelSelector(match_labels={"app": name}),
            service_name=f"{name}-search",
            template=V1PodTemplateSpec(
                spec=V1PodSpec(containers=[V1Container(name=container, image=image)])
            ),
        ),
    )


@pytest.fixture
def stateful_set():
    """Factory for a minimal live StatefulSet running one container."""
    return _stateful_set
