"""Structural fingerprints used to decide whether anything worth writing changed.

Each entity hashes an explicit, versioned list of field paths rather than
whatever happens to be on the object, so server-populated fields
(resourceVersion, managedFields, status, kopf bookkeeping annotations) can
never leak into the digest. Bump ``FINGERPRINT_VERSION`` whenever a field
list changes so every child is rewritten exactly once.
"""
import mmh3
import hashlib
from typing import Any, Mapping, Sequence, Tuple

from starop.utils.helpers import canonicalize_dict
from starop.utils.objects import dig

FINGERPRINT_VERSION = 1

FieldPath = Tuple[str, ...]

#: StarRocksCluster identity subset plus the whole desired spec.
CLUSTER_FIELDS: Sequence[FieldPath] = (
    ("metadata", "name"),
    ("metadata", "namespace"),
    ("metadata", "labels"),
    ("spec",),
)

#: Rendered StatefulSet/Deployment (``to_dict()`` form, hash annotation excluded).
WORKLOAD_FIELDS: Sequence[FieldPath] = (
    ("metadata", "name"),
    ("metadata", "labels"),
    ("metadata", "annotations"),
    ("spec",),
)

#: Rendered HorizontalPodAutoscaler body.
AUTOSCALER_FIELDS: Sequence[FieldPath] = (
    ("apiVersion",),
    ("metadata", "name"),
    ("metadata", "labels"),
    ("spec",),
)


def compute_hash(data: Any) -> str:
    """Compute a murmur3 hash, folded through sha256 for a short stable digest."""
    if isinstance(data, dict):
        _data = canonicalize_dict(data)
    elif isinstance(data, str):
        _data = data.encode()
    else:
        raise ValueError(f"Hash of {type(data)} is not supported.")
    mumur_str = str(mmh3.hash128(_data))
    full_hash = hashlib.sha256(mumur_str.encode("utf-8")).hexdigest()
    # 16 characters keep annotations readable
    return full_hash[:16]


def fingerprint(obj: Mapping, fields: Sequence[FieldPath]) -> str:
    """Hash the listed field paths of ``obj``. Missing fields hash as null."""
    subset = {
        "version": FINGERPRINT_VERSION,
        "fields": {".".join(path): dig(obj, path) for path in fields},
    }
    return compute_hash(subset)


def cluster_fingerprint(body: Mapping) -> str:
    return fingerprint(body, CLUSTER_FIELDS)


def workload_fingerprint(workload: Mapping) -> str:
    return fingerprint(workload, WORKLOAD_FIELDS)


def autoscaler_fingerprint(autoscaler: Mapping) -> str:
    return fingerprint(autoscaler, AUTOSCALER_FIELDS)
