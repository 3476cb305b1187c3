import datetime
import kopf


# Liveness probe
@kopf.on.probe(id="now")
def get_current_timestamp(**kwargs):
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@kopf.on.probe(id="apiRegistry")
def api_registry_ready(memo: kopf.Memo, **kwargs):
    """Reports whether startup finished wiring the shared Kubernetes client."""
    return getattr(memo, "registry", None) is not None
