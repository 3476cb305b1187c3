"""Rendering of tier child objects from a StarRocksCluster sub-spec.

Every function here is pure: it takes the cluster wrapper, the tier, the
tier sub-spec and the resolved properties, and returns kubernetes_asyncio
models. Nothing here talks to the API server.
"""
import math
from typing import Dict, List, Mapping, Optional, Tuple

from kubernetes_asyncio.client import (
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStrategy,
    V1EnvVar,
    V1EnvVarSource,
    V1HTTPGetAction,
    V1LabelSelector,
    V1ObjectFieldSelector,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PodSecurityContext,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Probe,
    V1ResourceRequirements,
    V1SecretVolumeSource,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1StatefulSetUpdateStrategy,
    V1TCPSocketAction,
    V1Volume,
    V1VolumeMount,
)

from starop.common.models.labels import Labels
from starop.common.models.tier import TierKind
from starop.types.models.cluster_resources import StarRocksClusterResources
from starop.types.models.component_spec import ComponentService, ComponentSpec, FeProxySpec
from starop.utils.helpers import safe_cast

PROBE_PERIOD_SECONDS = 5
DEFAULT_STARTUP_FAILURE_SECONDS = 300
DEFAULT_LIVENESS_FAILURE_SECONDS = 15
DEFAULT_READINESS_FAILURE_SECONDS = 15
HEALTH_PATH = "/api/health"

PROXY_PORT = 8080
PROXY_HEALTH_PATH = "/nginx/health"
PROXY_CONFIG_PATH = "/etc/nginx"
NGINX_UID = 101

#: (properties key, port name, default) per tier, in rendering order
TIER_PORTS: Dict[TierKind, Tuple[Tuple[str, str, int], ...]] = {
    TierKind.FRONTEND: (
        ("http_port", "http", 8030),
        ("rpc_port", "rpc", 9020),
        ("query_port", "query", 9030),
        ("edit_log_port", "edit-log", 9010),
    ),
    TierKind.BACKEND: (
        ("be_port", "be", 9060),
        ("webserver_port", "webserver", 8040),
        ("heartbeat_service_port", "heartbeat", 9050),
        ("brpc_port", "brpc", 8060),
    ),
    TierKind.COMPUTE: (
        ("thrift_port", "thrift", 9060),
        ("webserver_port", "webserver", 8040),
        ("heartbeat_service_port", "heartbeat", 9050),
        ("brpc_port", "brpc", 8060),
    ),
}

#: Port used for the http health probes of each tier
HEALTH_PORT_KEY = {
    TierKind.FRONTEND: "http_port",
    TierKind.BACKEND: "webserver_port",
    TierKind.COMPUTE: "webserver_port",
}

#: Port exposed by the headless search service of each tier
SEARCH_PORT_KEY = {
    TierKind.FRONTEND: "query_port",
    TierKind.BACKEND: "heartbeat_service_port",
    TierKind.COMPUTE: "heartbeat_service_port",
}


def get_port(tier: TierKind, config: Mapping[str, str], key: str) -> int:
    """Resolve a port from tier properties, falling back to the StarRocks default."""
    for port_key, _, default in TIER_PORTS[tier]:
        if port_key == key:
            return safe_cast(config.get(key), int, default)
    raise KeyError(f"{key} is not a {tier.value} port")


def tier_ports(tier: TierKind, config: Mapping[str, str]) -> List[Tuple[str, int]]:
    return [
        (name, safe_cast(config.get(key), int, default))
        for key, name, default in TIER_PORTS[tier]
    ]


def workload_image(workload, container_name: str) -> Optional[str]:
    """Image of the named container of a live workload, else of its first container."""
    containers = (
        workload.spec.template.spec.containers
        if workload is not None and workload.spec and workload.spec.template and workload.spec.template.spec
        else None
    )
    if not containers:
        return None
    for container in containers:
        if container.name == container_name:
            return container.image
    return containers[0].image


def failure_threshold(seconds: Optional[int], default: int) -> int:
    return max(1, math.ceil((seconds or default) / PROBE_PERIOD_SECONDS))


def http_probe(port: int, path: str, failure_seconds: Optional[int], default: int) -> V1Probe:
    return V1Probe(
        http_get=V1HTTPGetAction(path=path, port=port),
        period_seconds=PROBE_PERIOD_SECONDS,
        failure_threshold=failure_threshold(failure_seconds, default),
    )


def port_ready_probe(port: int) -> V1Probe:
    """Bare TCP readiness check used while restoring from a snapshot."""
    return V1Probe(
        tcp_socket=V1TCPSocketAction(port=port),
        initial_delay_seconds=5,
        timeout_seconds=1,
        period_seconds=10,
        success_threshold=1,
        failure_threshold=3,
    )


def _field_env(name: str, field_path: str) -> V1EnvVar:
    return V1EnvVar(
        name=name,
        value_from=V1EnvVarSource(field_ref=V1ObjectFieldSelector(field_path=field_path)),
    )


def _user_env(env_vars: List[dict]) -> List[V1EnvVar]:
    return [
        V1EnvVar(name=e["name"], value=e.get("value"), value_from=e.get("valueFrom"))
        for e in env_vars or []
        if e.get("name")
    ]


def build_env(
    cluster_name: str,
    namespace: str,
    tier: TierKind,
    spec: ComponentSpec,
    fe_query_port: int,
    domain_suffix: str,
) -> List[V1EnvVar]:
    env = [
        _field_env("POD_NAME", "metadata.name"),
        _field_env("POD_IP", "status.podIP"),
        _field_env("HOST_IP", "status.hostIP"),
        _field_env("POD_NAMESPACE", "metadata.namespace"),
        V1EnvVar(name="HOST_TYPE", value="FQDN"),
        V1EnvVar(name="COMPONENT_NAME", value=tier.value),
        V1EnvVar(
            name="FE_SERVICE_NAME",
            value=StarRocksClusterResources.qualified_service_name(
                cluster_name, namespace, TierKind.FRONTEND, domain_suffix
            ),
        ),
    ]
    if tier is not TierKind.FRONTEND:
        env.append(V1EnvVar(name="FE_QUERY_PORT", value=str(fe_query_port)))
    user_env = _user_env(spec.env_vars)
    overridden = {e.name for e in user_env}
    return [e for e in env if e.name not in overridden] + user_env


def _mounts(spec: ComponentSpec) -> Tuple[List[V1Volume], List[V1VolumeMount]]:
    volumes, mounts = [], []
    for volume in spec.storage_volumes or []:
        mounts.append(
            V1VolumeMount(name=volume.name, mount_path=volume.mount_path, sub_path=volume.sub_path)
        )
    for ref in spec.config_maps or []:
        volumes.append(V1Volume(name=ref.name, config_map=V1ConfigMapVolumeSource(name=ref.name)))
        mounts.append(V1VolumeMount(name=ref.name, mount_path=ref.mount_path, sub_path=ref.sub_path))
    for ref in spec.secrets or []:
        volumes.append(V1Volume(name=ref.name, secret=V1SecretVolumeSource(secret_name=ref.name)))
        mounts.append(V1VolumeMount(name=ref.name, mount_path=ref.mount_path, sub_path=ref.sub_path))
    return volumes, mounts


def build_pod_template(
    cluster_name: str,
    namespace: str,
    tier: TierKind,
    spec: ComponentSpec,
    config: Mapping[str, str],
    labels: Labels,
    fe_query_port: int,
    domain_suffix: str,
) -> V1PodTemplateSpec:
    health_port = get_port(tier, config, HEALTH_PORT_KEY[tier])
    volumes, mounts = _mounts(spec)
    container = V1Container(
        name=tier.container_name,
        image=spec.image,
        image_pull_policy=spec.image_pull_policy,
        command=[f"/opt/starrocks/{tier.value}_entrypoint.sh"],
        args=["$(FE_SERVICE_NAME)"],
        env=build_env(cluster_name, namespace, tier, spec, fe_query_port, domain_suffix),
        ports=[
            V1ContainerPort(name=f"{name}-port", container_port=port, protocol="TCP")
            for name, port in tier_ports(tier, config)
        ],
        resources=V1ResourceRequirements(
            requests=dict(spec.requests or {}) or None,
            limits=dict(spec.limits or {}) or None,
        ),
        startup_probe=http_probe(
            health_port, HEALTH_PATH, spec.startup_probe_failure_seconds, DEFAULT_STARTUP_FAILURE_SECONDS
        ),
        liveness_probe=http_probe(
            health_port, HEALTH_PATH, spec.liveness_probe_failure_seconds, DEFAULT_LIVENESS_FAILURE_SECONDS
        ),
        readiness_probe=http_probe(
            health_port, HEALTH_PATH, spec.readiness_probe_failure_seconds, DEFAULT_READINESS_FAILURE_SECONDS
        ),
        volume_mounts=mounts or None,
    )
    pod_labels = labels.as_dict()
    pod_labels.update(spec.pod_labels or {})
    return V1PodTemplateSpec(
        metadata=V1ObjectMeta(labels=pod_labels, annotations=dict(spec.annotations or {}) or None),
        spec=V1PodSpec(
            containers=[container],
            volumes=volumes or None,
            node_selector=dict(spec.node_selector or {}) or None,
            tolerations=list(spec.tolerations or []) or None,
            affinity=spec.affinity,
            service_account_name=spec.service_account,
            termination_grace_period_seconds=spec.termination_grace_period_seconds,
        ),
    )


def _claim_templates(spec: ComponentSpec, labels: Labels) -> Optional[List[V1PersistentVolumeClaim]]:
    claims = []
    for volume in spec.storage_volumes or []:
        if not volume.storage_size:
            continue
        claims.append(
            V1PersistentVolumeClaim(
                metadata=V1ObjectMeta(name=volume.name, labels=labels.selector().as_dict()),
                spec=V1PersistentVolumeClaimSpec(
                    access_modes=["ReadWriteOnce"],
                    storage_class_name=volume.storage_class_name,
                    resources={"requests": {"storage": volume.storage_size}},
                ),
            )
        )
    return claims or None


def build_stateful_set(
    name: str,
    namespace: str,
    tier: TierKind,
    spec: ComponentSpec,
    template: V1PodTemplateSpec,
    labels: Labels,
    owner_reference,
    service_name: str,
) -> V1StatefulSet:
    volumes = [v for v in spec.storage_volumes or [] if v.storage_size]
    claim_names = {v.name for v in volumes}
    # emptyDir backs declared volumes that have no size
    extra_volumes = [
        V1Volume(name=v.name, empty_dir={})
        for v in spec.storage_volumes or []
        if v.name not in claim_names
    ]
    if extra_volumes:
        template.spec.volumes = (template.spec.volumes or []) + extra_volumes
    return V1StatefulSet(
        api_version="apps/v1",
        kind="StatefulSet",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels.as_dict(),
            owner_references=[owner_reference],
        ),
        spec=V1StatefulSetSpec(
            replicas=spec.replicas,
            selector=V1LabelSelector(match_labels=labels.selector().as_dict()),
            service_name=service_name,
            pod_management_policy="Parallel",
            template=template,
            update_strategy=V1StatefulSetUpdateStrategy(type="RollingUpdate"),
            volume_claim_templates=_claim_templates(spec, labels),
        ),
    )


def _service_ports(
    defaults: List[Tuple[str, int]], service: Optional[ComponentService]
) -> List[V1ServicePort]:
    overrides = {p.container_port: p for p in (service.ports if service else []) if p.container_port}
    ports = []
    for name, container_port in defaults:
        override = overrides.get(container_port)
        ports.append(
            V1ServicePort(
                name=(override.name if override and override.name else name),
                port=(override.port if override and override.port else container_port),
                target_port=container_port,
                node_port=override.node_port if override else None,
                protocol="TCP",
                app_protocol="mysql" if name == "query" else None,
            )
        )
    return ports


def build_external_service(
    name: str,
    namespace: str,
    ports: List[Tuple[str, int]],
    service: Optional[ComponentService],
    labels: Labels,
    owner_reference,
) -> V1Service:
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels.as_dict(),
            annotations=dict(service.annotations) if service and service.annotations else None,
            owner_references=[owner_reference],
        ),
        spec=V1ServiceSpec(
            type=(service.type if service and service.type else "ClusterIP"),
            selector=labels.selector().as_dict(),
            ports=_service_ports(ports, service),
            load_balancer_ip=service.load_balancer_ip if service else None,
        ),
    )


def build_search_service(
    name: str,
    namespace: str,
    port_name: str,
    port: int,
    labels: Labels,
    owner_reference,
) -> V1Service:
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels.as_dict(),
            owner_references=[owner_reference],
        ),
        spec=V1ServiceSpec(
            cluster_ip="None",
            publish_not_ready_addresses=True,
            selector=labels.selector().as_dict(),
            ports=[V1ServicePort(name=port_name, port=port, target_port=port, protocol="TCP")],
        ),
    )


# ----------------------------------------------------------------------
# FE proxy
# ----------------------------------------------------------------------

_NGINX_LOCATION_HEADERS = """      proxy_set_header Expect $http_expect;
      proxy_set_header Host $host;
      proxy_set_header X-Real-IP $remote_addr;
      proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
      error_page 307 = @handle_redirect;"""

NGINX_CONF_TEMPLATE = """pid   /tmp/nginx.pid;
worker_processes 4;
include /usr/share/nginx/modules/*.conf;
events {
  worker_connections 256;
}

http {
  sendfile            on;
  tcp_nopush          on;
  tcp_nodelay         on;
  keepalive_timeout   65;
  types_hash_max_size 2048;
  client_max_body_size 0;
  ignore_invalid_headers off;
  underscores_in_headers on;
  proxy_read_timeout 600s;
  proxy_http_version 1.1;

  client_body_temp_path /tmp/client_temp;
  proxy_temp_path       /tmp/proxy_temp_path;
  fastcgi_temp_path     /tmp/fastcgi_temp;
  uwsgi_temp_path       /tmp/uwsgi_temp;
  scgi_temp_path        /tmp/scgi_temp;

  default_type        application/octet-stream;

  server {
    listen %(listen_port)d;
    resolver %(resolver)s valid=10s;
    proxy_intercept_errors on;
    recursive_error_pages on;

    location %(health_path)s {
      access_log off;
      return 200;
    }

    location / {
      set $fe_service "%(proxy_pass)s";
      proxy_pass $fe_service;
%(headers)s
    }

    location /api/transaction/load {
      set $fe_service "%(proxy_pass)s";
      proxy_pass $fe_service;
      proxy_pass_request_body off;
%(headers)s
    }

    location ~ ^/api/.*/.*/_stream_load$ {
      set $fe_service "%(proxy_pass)s";
      proxy_pass $fe_service;
      proxy_pass_request_body off;
%(headers)s
    }

    location @handle_redirect {
      if ($upstream_http_location ~ "%(fe_search_service)s") {
        rewrite ^ /_redirect_to_fe last;
      }
      if ($upstream_http_location !~ "%(fe_search_service)s") {
        rewrite ^ /_redirect_to_others last;
      }
    }

    location /_redirect_to_fe {
      set $redirect_uri '$upstream_http_location';
      proxy_pass $redirect_uri;
      proxy_pass_request_body off;
%(headers)s
    }

    location /_redirect_to_others {
      set $redirect_uri '$upstream_http_location';
      proxy_pass $redirect_uri;
      proxy_pass_request_body on;
%(headers)s
    }
  }
}
"""


def render_nginx_conf(
    cluster_name: str,
    namespace: str,
    fe_http_port: int,
    resolver: Optional[str],
    domain_suffix: str,
) -> str:
    fe_service = StarRocksClusterResources.service_name(cluster_name, TierKind.FRONTEND)
    return NGINX_CONF_TEMPLATE % dict(
        listen_port=PROXY_PORT,
        resolver=resolver or f"kube-dns.kube-system.{domain_suffix}",
        health_path=PROXY_HEALTH_PATH,
        proxy_pass=f"http://{fe_service}.{namespace}.{domain_suffix}:{fe_http_port}",
        fe_search_service=StarRocksClusterResources.search_service_name(cluster_name, TierKind.FRONTEND),
        headers=_NGINX_LOCATION_HEADERS,
    )


def build_proxy_config_map(
    name: str, namespace: str, nginx_conf: str, labels: Labels, owner_reference
) -> V1ConfigMap:
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels.as_dict(),
            owner_references=[owner_reference],
        ),
        data={"nginx.conf": nginx_conf},
    )


def build_proxy_deployment(
    name: str,
    namespace: str,
    spec: FeProxySpec,
    config_map_name: str,
    labels: Labels,
    owner_reference,
) -> V1Deployment:
    container = V1Container(
        name="nginx",
        image=spec.image,
        image_pull_policy=spec.image_pull_policy,
        ports=[V1ContainerPort(name="http-port", container_port=PROXY_PORT, protocol="TCP")],
        resources=V1ResourceRequirements(
            requests=dict(spec.requests or {}) or None,
            limits=dict(spec.limits or {}) or None,
        ),
        liveness_probe=http_probe(PROXY_PORT, PROXY_HEALTH_PATH, None, DEFAULT_LIVENESS_FAILURE_SECONDS),
        readiness_probe=http_probe(PROXY_PORT, PROXY_HEALTH_PATH, None, DEFAULT_READINESS_FAILURE_SECONDS),
        volume_mounts=[V1VolumeMount(name="nginx-conf", mount_path=PROXY_CONFIG_PATH, read_only=True)],
    )
    template = V1PodTemplateSpec(
        metadata=V1ObjectMeta(labels=labels.as_dict()),
        spec=V1PodSpec(
            containers=[container],
            volumes=[
                V1Volume(
                    name="nginx-conf",
                    config_map=V1ConfigMapVolumeSource(name=config_map_name),
                )
            ],
            # nginx runs as the nginx user and cannot switch
            security_context=V1PodSecurityContext(
                run_as_user=NGINX_UID, run_as_group=NGINX_UID, fs_group=NGINX_UID
            ),
            node_selector=dict(spec.node_selector or {}) or None,
            tolerations=list(spec.tolerations or []) or None,
            affinity=spec.affinity,
        ),
    )
    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels.as_dict(),
            owner_references=[owner_reference],
        ),
        spec=V1DeploymentSpec(
            replicas=spec.replicas if spec.replicas is not None else 1,
            selector=V1LabelSelector(match_labels=labels.selector().as_dict()),
            template=template,
            strategy=V1DeploymentStrategy(type="RollingUpdate"),
        ),
    )
