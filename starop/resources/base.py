from typing import Any, Dict, List, Optional
from kubernetes_asyncio.client import (
    ApiException,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    StorageV1Api,
    V1ConfigMap,
    V1DeleteOptions,
    V1Deployment,
    V1Endpoints,
    V1PersistentVolumeClaimList,
    V1PodList,
    V1Service,
    V1StatefulSet,
    V1StorageClass,
    V1StorageClassList,
)

from starop.common.models.labels import Labels
from starop.utils.errors import already_exists_error
from starop.utils.fingerprint import compute_hash

BACKGROUND_DELETE = V1DeleteOptions(propagation_policy="Background")


class BaseResource:
    """Base resource model.

    Thin async CRUD over the kubernetes_asyncio typed APIs. Reads return
    ``None`` on 404 and deletes treat 404 as success. ConfigMap creation
    falls back to replace when the object already exists.
    """

    STARROCKS_OPERATOR_NAME = "starrocks-operator"

    _cluster: str
    _namespace: str
    _component_name: str
    _labels: Labels

    def __init__(
        self, cluster: str, namespace: str, component_name: str, labels: Labels
    ):
        self._cluster = cluster
        self._namespace = namespace
        self._component_name = component_name
        self._labels = labels

    @property
    def cluster(self) -> str:
        return self._cluster

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def component_name(self) -> str:
        return self._component_name

    @property
    def labels(self) -> Labels:
        return self._labels

    def compute_hash(self, data: Any) -> str:
        return compute_hash(data)

    def prepare_hash_annotation(self, hash: str) -> Dict[str, str]:
        """Prepare hash annotation for k8s resources."""
        return {Labels.HASH_ANNOTATION: str(hash)}

    # ------------------------------------------------------------------
    # StatefulSet
    # ------------------------------------------------------------------

    async def fetch_stateful_set(
        self, apps_v1_api: AppsV1Api, name: str, namespace: str
    ) -> Optional[V1StatefulSet]:
        try:
            return await apps_v1_api.read_namespaced_stateful_set(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_stateful_set(
        self, apps_v1_api: AppsV1Api, namespace: str, stateful_set: V1StatefulSet
    ):
        await apps_v1_api.create_namespaced_stateful_set(namespace=namespace, body=stateful_set)

    async def patch_stateful_set(
        self, apps_v1_api: AppsV1Api, name: str, namespace: str, patch: List[Dict]
    ):
        await apps_v1_api.patch_namespaced_stateful_set(name=name, namespace=namespace, body=patch)

    async def delete_stateful_set(self, apps_v1_api: AppsV1Api, name: str, namespace: str):
        try:
            await apps_v1_api.delete_namespaced_stateful_set(
                name=name, namespace=namespace, body=BACKGROUND_DELETE
            )
        except ApiException as ex:
            if ex.status == 404:
                return
            raise

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    async def fetch_deployment(
        self, apps_v1_api: AppsV1Api, name: str, namespace: str
    ) -> Optional[V1Deployment]:
        try:
            return await apps_v1_api.read_namespaced_deployment(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_deployment(
        self, apps_v1_api: AppsV1Api, namespace: str, deployment: V1Deployment
    ):
        await apps_v1_api.create_namespaced_deployment(namespace=namespace, body=deployment)

    async def patch_deployment(
        self, apps_v1_api: AppsV1Api, name: str, namespace: str, patch: List[Dict]
    ):
        await apps_v1_api.patch_namespaced_deployment(name=name, namespace=namespace, body=patch)

    async def delete_deployment(self, apps_v1_api: AppsV1Api, name: str, namespace: str):
        try:
            await apps_v1_api.delete_namespaced_deployment(
                name=name, namespace=namespace, body=BACKGROUND_DELETE
            )
        except ApiException as ex:
            if ex.status == 404:
                return
            raise

    # ------------------------------------------------------------------
    # Service
    # ------------------------------------------------------------------

    async def fetch_service(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1Service]:
        """Retrieve the latest state of a service"""
        try:
            return await core_v1_api.read_namespaced_service(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_service(
        self, core_v1_api: CoreV1Api, namespace: str, service: V1Service
    ) -> None:
        await core_v1_api.create_namespaced_service(namespace=namespace, body=service)

    async def patch_service(
        self, core_v1_api: CoreV1Api, name: str, namespace: str, patch: List[Dict]
    ):
        await core_v1_api.patch_namespaced_service(name=name, namespace=namespace, body=patch)

    async def delete_service(self, core_v1_api: CoreV1Api, name: str, namespace: str):
        try:
            await core_v1_api.delete_namespaced_service(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return
            raise

    async def fetch_endpoints(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1Endpoints]:
        try:
            return await core_v1_api.read_namespaced_endpoints(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    # ------------------------------------------------------------------
    # ConfigMap
    # ------------------------------------------------------------------

    async def fetch_config_map(
        self, core_v1_api: CoreV1Api, name: str, namespace: str
    ) -> Optional[V1ConfigMap]:
        try:
            return await core_v1_api.read_namespaced_config_map(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_config_map(
        self, core_v1_api: CoreV1Api, namespace: str, config_map: V1ConfigMap
    ):
        try:
            await core_v1_api.create_namespaced_config_map(namespace=namespace, body=config_map)
        except ApiException as ex:
            if already_exists_error(ex):
                await self.replace_config_map(
                    core_v1_api,
                    name=config_map.metadata.name,
                    namespace=namespace,
                    config_map=config_map,
                )
            else:
                raise

    async def replace_config_map(
        self, core_v1_api: CoreV1Api, name: str, namespace: str, config_map: V1ConfigMap
    ):
        await core_v1_api.replace_namespaced_config_map(
            name=name,
            namespace=namespace,
            body=config_map,
        )

    async def patch_config_map(
        self, core_v1_api: CoreV1Api, name: str, namespace: str, patch: List[Dict]
    ):
        await core_v1_api.patch_namespaced_config_map(name=name, namespace=namespace, body=patch)

    async def delete_config_map(self, core_v1_api: CoreV1Api, name: str, namespace: str):
        try:
            await core_v1_api.delete_namespaced_config_map(name=name, namespace=namespace)
        except ApiException as ex:
            if ex.status == 404:
                return
            raise

    # ------------------------------------------------------------------
    # Pods
    # ------------------------------------------------------------------

    async def list_pods(
        self, core_v1_api: CoreV1Api, namespace: str, label_selector: dict = None
    ) -> V1PodList:
        """List pods in namespace, optionally filtered by label selector."""
        label_selector_str = None
        if label_selector:
            label_selector_str = ",".join([f"{k}={v}" for k, v in label_selector.items()])
        return await core_v1_api.list_namespaced_pod(
            namespace=namespace,
            label_selector=label_selector_str,
        )

    # ------------------------------------------------------------------
    # Persistent volume claims and storage classes
    # ------------------------------------------------------------------

    async def list_persistent_volume_claims(
        self, core_v1_api: CoreV1Api, namespace: str
    ) -> V1PersistentVolumeClaimList:
        return await core_v1_api.list_namespaced_persistent_volume_claim(namespace=namespace)

    async def patch_persistent_volume_claim(
        self, core_v1_api: CoreV1Api, name: str, namespace: str, patch: List[Dict]
    ):
        await core_v1_api.patch_namespaced_persistent_volume_claim(
            name=name, namespace=namespace, body=patch
        )

    async def fetch_storage_class(
        self, storage_v1_api: StorageV1Api, name: str
    ) -> Optional[V1StorageClass]:
        try:
            return await storage_v1_api.read_storage_class(name=name)
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def list_storage_classes(self, storage_v1_api: StorageV1Api) -> V1StorageClassList:
        return await storage_v1_api.list_storage_class()

    # ------------------------------------------------------------------
    # Custom objects
    # ------------------------------------------------------------------

    async def get_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        name: str,
    ) -> Optional[Dict]:
        try:
            return await custom_objects_api.get_namespaced_custom_object(
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                name=name,
            )
        except ApiException as ex:
            if ex.status == 404:
                return None
            raise

    async def create_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        body: Dict,
    ):
        await custom_objects_api.create_namespaced_custom_object(
            group=group, version=version, namespace=namespace, plural=plural, body=body
        )

    async def replace_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        name: str,
        body: Dict,
    ):
        """Replace a custom object. ``body.metadata.resourceVersion`` makes it conditional."""
        await custom_objects_api.replace_namespaced_custom_object(
            group=group, version=version, namespace=namespace, plural=plural, name=name, body=body
        )

    async def delete_custom_object(
        self,
        custom_objects_api: CustomObjectsApi,
        namespace: str,
        group: str,
        version: str,
        plural: str,
        name: str,
    ):
        try:
            await custom_objects_api.delete_namespaced_custom_object(
                group=group, version=version, namespace=namespace, plural=plural, name=name
            )
        except ApiException as ex:
            if ex.status == 404:
                return
            raise
