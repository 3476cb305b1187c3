"""Unit tests for structural fingerprints."""

import copy

import pytest
from starop.utils.fingerprint import (
    CLUSTER_FIELDS,
    autoscaler_fingerprint,
    cluster_fingerprint,
    compute_hash,
    fingerprint,
    workload_fingerprint,
)


@pytest.fixture
def body():
    """A cluster body with server-populated noise."""
    return {
        "metadata": {
            "name": "sr",
            "namespace": "default",
            "labels": {"team": "data"},
            "resourceVersion": "41",
            "managedFields": [{"manager": "kubectl"}],
        },
        "spec": {
            "starRocksFeSpec": {"image": "fe:3.2", "replicas": 3},
            "starRocksCnSpec": {"image": "cn:3.2", "replicas": 2},
        },
        "status": {"phase": "running"},
    }


class TestComputeHash:
    """Tests for the digest primitive."""

    def test_key_order_does_not_matter(self):
        """Dicts with the same content hash the same."""
        assert compute_hash({"a": 1, "b": [1, 2]}) == compute_hash({"b": [1, 2], "a": 1})

    def test_strings_are_supported(self):
        """Plain strings can be hashed."""
        assert len(compute_hash("nginx.conf")) == 16

    def test_unsupported_type_raises(self):
        """Only dicts and strings are accepted."""
        with pytest.raises(ValueError):
            compute_hash(42)


class TestClusterFingerprint:
    """Tests for the whole-object fingerprint."""

    def test_ignores_status_and_server_fields(self, body):
        """Status, resourceVersion and managedFields are outside the field list."""
        changed = copy.deepcopy(body)
        changed["status"] = {"phase": "failed"}
        changed["metadata"]["resourceVersion"] = "99"
        changed["metadata"]["managedFields"] = []
        assert cluster_fingerprint(body) == cluster_fingerprint(changed)

    def test_detects_spec_mutation(self, body):
        """Clearing the compute replica count changes the fingerprint."""
        changed = copy.deepcopy(body)
        del changed["spec"]["starRocksCnSpec"]["replicas"]
        assert cluster_fingerprint(body) != cluster_fingerprint(changed)

    def test_detects_label_change(self, body):
        """Labels are part of the identity subset."""
        changed = copy.deepcopy(body)
        changed["metadata"]["labels"]["team"] = "infra"
        assert cluster_fingerprint(body) != cluster_fingerprint(changed)

    def test_explicit_field_list(self, body):
        """The helper is the generic fingerprint over the cluster field list."""
        assert cluster_fingerprint(body) == fingerprint(body, CLUSTER_FIELDS)


class TestChildFingerprints:
    """Tests for workload and autoscaler fingerprints."""

    def test_workload_ignores_status(self):
        """A workload's status does not feed its fingerprint."""
        sts = {"metadata": {"name": "sr-fe", "labels": {}}, "spec": {"replicas": 3}}
        with_status = dict(sts, status={"ready_replicas": 3})
        assert workload_fingerprint(sts) == workload_fingerprint(with_status)

    def test_autoscaler_includes_api_version(self):
        """Switching autoscaling API versions changes the fingerprint."""
        hpa = {"apiVersion": "autoscaling/v2", "metadata": {"name": "a"}, "spec": {"maxReplicas": 3}}
        older = dict(hpa, apiVersion="autoscaling/v2beta2")
        assert autoscaler_fingerprint(hpa) != autoscaler_fingerprint(older)
