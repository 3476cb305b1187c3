"""Growth of the persistent volumes behind a stateful tier.

Claim templates of a live StatefulSet cannot change, so a larger
``storageSize`` is rolled out by resizing every existing claim in place.
Claims are only resized when their storage class allows expansion and its
provisioner grows attached volumes; anything else is reported instead.
"""
import logging
from logging import Logger
from typing import List, NamedTuple, Optional

from kubernetes_asyncio.client import V1StatefulSet, V1StorageClass

from starop.common.models.labels import Labels
from starop.resources.base import BaseResource
from starop.resources.registry import ApiRegistry
from starop.utils.helpers import parse_quantity
from starop.utils.objects import attr

module_logger = logging.getLogger(__name__)

EPHEMERAL_STORAGE_CLASSES = ("emptyDir", "hostPath")

DEFAULT_CLASS_ANNOTATIONS = (
    "storageclass.kubernetes.io/is-default-class",
    "storageclass.beta.kubernetes.io/is-default-class",
)

EXPANSION_MODE_PARAMETER = "expansion-mode"

# Provisioners known to resize volumes while pods keep them mounted
ONLINE_EXPANSION_PROVISIONERS = frozenset(
    {
        "kubernetes.io/gce-pd",
        "pd.csi.storage.gke.io",
        "kubernetes.io/aws-ebs",
        "ebs.csi.aws.com",
        "dobs.csi.digitalocean.com",
        "linodebs.csi.linode.com",
        "openebs.io/local",
        "driver.longhorn.io",
    }
)


class ClaimExpansion(NamedTuple):
    claim_name: str
    volume_name: str
    current_size: str
    new_size: str


class ExpansionPlan(NamedTuple):
    claims: List[ClaimExpansion]
    errors: List[str]


def storage_request(claim) -> Optional[str]:
    """Requested storage of a claim or claim template, typed model or plain dict."""
    resources = attr(claim, "spec", "resources")
    if isinstance(resources, dict):
        requests = resources.get("requests")
    else:
        requests = attr(resources, "requests")
    return (requests or {}).get("storage")


def requires_detachment(storage_class: V1StorageClass) -> bool:
    """True when the class can only grow volumes that no pod has mounted."""
    mode = (storage_class.parameters or {}).get(EXPANSION_MODE_PARAMETER)
    if mode == "online":
        return False
    if mode in ("offline", "detached"):
        return True
    return storage_class.provisioner not in ONLINE_EXPANSION_PROVISIONERS


def is_default_class(storage_class: V1StorageClass) -> bool:
    annotations = storage_class.metadata.annotations or {}
    return any(annotations.get(key) == "true" for key in DEFAULT_CLASS_ANNOTATIONS)


class VolumeExpander(BaseResource):
    """Plans and applies claim resizes for one StatefulSet."""

    def __init__(
        self,
        cluster: str,
        namespace: str,
        component_name: str,
        labels: Labels,
        registry: ApiRegistry,
        logger: Logger = None,
    ):
        super().__init__(cluster, namespace, component_name, labels)
        self.registry = registry
        self.logger = logger or module_logger

    async def storage_class_error(self, name: Optional[str]) -> Optional[str]:
        """Why claims of class ``name`` cannot grow in place, or None when they can."""
        storage_v1_api = self.registry.storage_v1_api
        if name is None:
            classes = await self.list_storage_classes(storage_v1_api)
            storage_class = next((sc for sc in classes.items or [] if is_default_class(sc)), None)
            if storage_class is None:
                return "no default storage class found"
            label = f"default storage class {storage_class.metadata.name}"
        else:
            storage_class = await self.fetch_storage_class(storage_v1_api, name)
            label = f"storage class {name}"
            if storage_class is None:
                return f"{label} not found"
        if not storage_class.allow_volume_expansion:
            return f"{label} does not allow volume expansion"
        if requires_detachment(storage_class):
            return f"{label} only expands detached volumes"
        return None

    async def plan(self, live: V1StatefulSet, desired: V1StatefulSet) -> ExpansionPlan:
        current = {
            template.metadata.name: template
            for template in attr(live, "spec", "volume_claim_templates", default=[])
        }
        claims: List[ClaimExpansion] = []
        errors: List[str] = []
        pvcs = None
        for template in attr(desired, "spec", "volume_claim_templates", default=[]):
            volume = template.metadata.name
            storage_class = template.spec.storage_class_name
            new_size = storage_request(template)
            if volume not in current or not new_size or storage_class in EPHEMERAL_STORAGE_CLASSES:
                continue
            current_size = storage_request(current[volume])
            if not current_size:
                continue
            new_bytes = parse_quantity(new_size)
            current_bytes = parse_quantity(current_size)
            if new_bytes < current_bytes:
                errors.append(f"shrinking volume {volume} from {current_size} to {new_size} is not supported")
                continue
            if new_bytes == current_bytes:
                continue
            if pvcs is None:
                listed = await self.list_persistent_volume_claims(self.registry.core_v1_api, self.namespace)
                pvcs = listed.items or []
            # Claims of a StatefulSet are named {template}-{statefulset}-{ordinal}
            prefix = f"{volume}-{self.component_name}-"
            pending = [
                pvc
                for pvc in pvcs
                if pvc.metadata.name.startswith(prefix)
                and parse_quantity(storage_request(pvc) or 0) < new_bytes
            ]
            if not pending:
                continue
            reason = await self.storage_class_error(storage_class)
            if reason:
                errors.append(f"cannot expand volume {volume}: {reason}")
                continue
            for pvc in sorted(pending, key=lambda p: p.metadata.name):
                claims.append(ClaimExpansion(pvc.metadata.name, volume, storage_request(pvc), new_size))
        return ExpansionPlan(claims, errors)

    async def expand(self, claim: ClaimExpansion) -> None:
        self.logger.info(f"Expanding {claim.claim_name} from {claim.current_size} to {claim.new_size}")
        body = [{"op": "add", "path": "/spec/resources/requests/storage", "value": claim.new_size}]
        await self.patch_persistent_volume_claim(
            self.registry.core_v1_api, claim.claim_name, self.namespace, body
        )
