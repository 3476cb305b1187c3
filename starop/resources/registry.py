from kubernetes_asyncio.client import (
    ApiClient,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    StorageV1Api,
    VersionApi,
)
from starop.utils.objects import cached_property


class ApiRegistry:
    """Typed API handles over one shared ``ApiClient``.

    Built once at operator startup, stored on the kopf memo and passed by
    reference into the orchestrator and every controller.
    """

    def __init__(self, api_client: ApiClient = None) -> None:
        self.api_client = api_client

    @cached_property
    def apps_v1_api(self) -> AppsV1Api:
        return AppsV1Api(self.api_client)

    @cached_property
    def core_v1_api(self) -> CoreV1Api:
        return CoreV1Api(self.api_client)

    @cached_property
    def custom_objects_api(self) -> CustomObjectsApi:
        return CustomObjectsApi(self.api_client)

    @cached_property
    def storage_v1_api(self) -> StorageV1Api:
        return StorageV1Api(self.api_client)

    @cached_property
    def version_api(self) -> VersionApi:
        return VersionApi(self.api_client)
