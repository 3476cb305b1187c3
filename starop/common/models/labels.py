from typing import Dict


class ResourceLabels:
    STARROCKS_DOMAIN: str = "app.starrocks."

    #: Selector label carrying ``{cluster}-{tier}``
    OWNER_REFERENCE_LABEL = STARROCKS_DOMAIN + "ownerreference/name"

    #: Annotation holding the fingerprint of the rendered child
    HASH_ANNOTATION = STARROCKS_DOMAIN + "components/hash"


class Labels(ResourceLabels):
    KUBERNETES_DOMAIN = "app.kubernetes.io/"

    KUBERNETES_NAME_LABEL = KUBERNETES_DOMAIN + "name"

    KUBERNETES_INSTANCE_LABEL = KUBERNETES_DOMAIN + "instance"

    KUBERNETES_COMPONENT_LABEL = KUBERNETES_DOMAIN + "component"

    KUBERNETES_MANAGED_BY_LABEL = KUBERNETES_DOMAIN + "managed-by"

    APPLICATION_NAME = "starrocks"

    _labels: Dict[str, str]

    def __init__(self, labels: Dict[str, str] = None) -> None:
        self._labels = dict(labels) if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update(labels.copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels as dictionary."""
        return self._labels.copy()

    def include(self, label: str, value: str) -> "Labels":
        self.update({label: value})
        return self

    def include_kubernetes_name(self, name: str) -> "Labels":
        return self.include(self.KUBERNETES_NAME_LABEL, name)

    def include_kubernetes_instance(self, instance_name: str) -> "Labels":
        return self.include(
            self.KUBERNETES_INSTANCE_LABEL,
            self.get_or_valid_instance_label_value(instance_name),
        )

    def include_kubernetes_component(self, tier: str) -> "Labels":
        return self.include(self.KUBERNETES_COMPONENT_LABEL, tier)

    def include_kubernetes_managed_by(self, operator_name: str) -> "Labels":
        return self.include(self.KUBERNETES_MANAGED_BY_LABEL, operator_name)

    def include_owner_reference(self, owner_name: str) -> "Labels":
        return self.include(
            self.OWNER_REFERENCE_LABEL,
            self.get_or_valid_instance_label_value(owner_name),
        )

    def get_or_valid_instance_label_value(self, instance: str):
        """Trim the value to a valid label value:
        * (([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?
        * 63 characters max
        """
        if not instance:
            return ""
        value = instance[:63]
        return value.rstrip(".-_")

    def contains(self, other: "Labels"):
        """Returns True if all labels in `other` are contained."""
        return all(
            key in self._labels and self._labels[key] == value
            for key, value in other.as_dict().items()
        )

    def selector(self) -> "Labels":
        """The immutable subset used in workload selectors and pod listing."""
        keys = [self.KUBERNETES_COMPONENT_LABEL, self.OWNER_REFERENCE_LABEL]
        return Labels({key: self._labels[key] for key in keys if key in self._labels})

    def __str__(self):
        return f"Labels<{self._labels}>"

    @classmethod
    def empty(cls) -> "Labels":
        return Labels({})

    @classmethod
    def generate_default_labels(
        cls,
        cluster_name: str,
        tier: str,
        owner_name: str,
        managed_by: str,
    ) -> "Labels":
        return (
            Labels()
            .include_kubernetes_name(cls.APPLICATION_NAME)
            .include_kubernetes_instance(cluster_name)
            .include_kubernetes_component(tier)
            .include_owner_reference(owner_name)
            .include_kubernetes_managed_by(managed_by)
        )
