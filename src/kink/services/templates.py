"""Pod and Service bodies for the roles of one control plane replica.

Each KinkMachine runs an etcd pod and an API server pod, and the cluster's
etcd is reachable through the ``<cluster>-etcd-svc`` Service. Every object
carries the cluster label, the role label and a controller reference to the
machine, which is how the machine controller finds them again.
"""

from kink.models.credential import TLS_CRT_KEY, TLS_KEY_KEY, credential_name
from kink.models.infrastructure import CLUSTER_NAME_LABEL
from kink.models.workload import API_SERVER_ROLE, ETCD_ROLE, ROLE_LABEL, Pod, Service
from kink.services.machine_manager import generate_name

DEFAULT_IMAGE_REGISTRY = "registry.k8s.io"
DEFAULT_KUBERNETES_VERSION = "v1.27.3"
ETCD_VERSION = "3.5.9-0"

ETCD_PORT = 2379
API_SERVER_PORT = 6443
PKI_DIR = "/etc/kubernetes/pki"

# Credentials the API server mounts, one directory per purpose
API_SERVER_CREDENTIALS = [
    "ca",
    "apiserver",
    "apiserver-kubelet-client",
    "front-proxy-ca",
    "front-proxy-client",
    "sa",
]

_HOST_IP_ENV = {"name": "HOST_IP", "valueFrom": {"fieldRef": {"fieldPath": "status.podIP"}}}


def etcd_service_name(cluster):
    return f"{cluster.name}-etcd-svc"


def _metadata(cluster, machine, role, name=None, generate=None):
    metadata = {
        "namespace": cluster.namespace,
        "labels": {CLUSTER_NAME_LABEL: cluster.name, ROLE_LABEL: role},
        "ownerReferences": [machine.owner_reference().model_dump(exclude_none=True)],
    }
    metadata["name"] = name or generate(f"{cluster.name}-{role}-")
    return metadata


def _pki_path(purpose, key):
    return f"{PKI_DIR}/{purpose}/{key}"


def etcd_pod(cluster, machine, image_registry=DEFAULT_IMAGE_REGISTRY, name_generator=generate_name):
    return Pod.model_validate(
        {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": _metadata(cluster, machine, ETCD_ROLE, generate=name_generator),
            "spec": {
                "restartPolicy": "Always",
                "hostNetwork": True,
                "containers": [
                    {
                        "name": "etcd",
                        "image": f"{image_registry}/etcd:{ETCD_VERSION}",
                        "env": [_HOST_IP_ENV],
                        "command": [
                            "etcd",
                            "--data-dir=/var/lib/etcd",
                            f"--listen-client-urls=http://0.0.0.0:{ETCD_PORT}",
                            f"--advertise-client-urls=http://$(HOST_IP):{ETCD_PORT}",
                        ],
                        "ports": [{"name": "client", "containerPort": ETCD_PORT}],
                        "volumeMounts": [{"name": "data", "mountPath": "/var/lib/etcd"}],
                    }
                ],
                "volumes": [{"name": "data", "emptyDir": {}}],
            },
        }
    )


def api_server_pod(
    cluster, machine, image_registry=DEFAULT_IMAGE_REGISTRY, name_generator=generate_name
):
    version = machine.spec.version or DEFAULT_KUBERNETES_VERSION
    etcd_url = f"http://{etcd_service_name(cluster)}.{cluster.namespace}:{ETCD_PORT}"
    args = [
        "--advertise-address=$(HOST_IP)",
        f"--secure-port={API_SERVER_PORT}",
        f"--etcd-servers={etcd_url}",
        f"--service-cluster-ip-range={cluster.service_subnet}",
        "--allow-privileged=true",
        "--authorization-mode=Node,RBAC",
        "--enable-admission-plugins=NodeRestriction",
        "--enable-bootstrap-token-auth=true",
        "--kubelet-preferred-address-types=InternalIP,ExternalIP,Hostname",
        f"--client-ca-file={_pki_path('ca', TLS_CRT_KEY)}",
        f"--tls-cert-file={_pki_path('apiserver', TLS_CRT_KEY)}",
        f"--tls-private-key-file={_pki_path('apiserver', TLS_KEY_KEY)}",
        f"--kubelet-client-certificate={_pki_path('apiserver-kubelet-client', TLS_CRT_KEY)}",
        f"--kubelet-client-key={_pki_path('apiserver-kubelet-client', TLS_KEY_KEY)}",
        f"--requestheader-client-ca-file={_pki_path('front-proxy-ca', TLS_CRT_KEY)}",
        "--requestheader-allowed-names=front-proxy-client",
        "--requestheader-extra-headers-prefix=X-Remote-Extra-",
        "--requestheader-group-headers=X-Remote-Group",
        "--requestheader-username-headers=X-Remote-User",
        f"--proxy-client-cert-file={_pki_path('front-proxy-client', TLS_CRT_KEY)}",
        f"--proxy-client-key-file={_pki_path('front-proxy-client', TLS_KEY_KEY)}",
        f"--service-account-issuer=https://kubernetes.default.svc.{cluster.service_domain}",
        f"--service-account-key-file={_pki_path('sa', TLS_CRT_KEY)}",
        f"--service-account-signing-key-file={_pki_path('sa', TLS_KEY_KEY)}",
    ]

    return Pod.model_validate(
        {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": _metadata(cluster, machine, API_SERVER_ROLE, generate=name_generator),
            "spec": {
                "restartPolicy": "Always",
                "hostNetwork": True,
                "dnsPolicy": "ClusterFirstWithHostNet",
                "containers": [
                    {
                        "name": "apiserver",
                        "image": f"{image_registry}/kube-apiserver:{version}",
                        "env": [_HOST_IP_ENV],
                        "command": ["kube-apiserver"],
                        "args": args,
                        "ports": [{"name": "https", "containerPort": API_SERVER_PORT}],
                        "volumeMounts": [
                            {"name": purpose, "mountPath": f"{PKI_DIR}/{purpose}", "readOnly": True}
                            for purpose in API_SERVER_CREDENTIALS
                        ],
                    }
                ],
                "volumes": [
                    {
                        "name": purpose,
                        "secret": {"secretName": credential_name(cluster.name, purpose)},
                    }
                    for purpose in API_SERVER_CREDENTIALS
                ],
            },
        }
    )


def etcd_service(cluster, machine):
    return Service.model_validate(
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": _metadata(cluster, machine, ETCD_ROLE, name=etcd_service_name(cluster)),
            "spec": {
                "type": "ClusterIP",
                "selector": {CLUSTER_NAME_LABEL: cluster.name, ROLE_LABEL: ETCD_ROLE},
                "ports": [{"name": "client", "port": ETCD_PORT, "targetPort": ETCD_PORT}],
            },
        }
    )


def pod_templates(
    cluster, machine, image_registry=DEFAULT_IMAGE_REGISTRY, name_generator=generate_name
):
    """Role to Pod for every pod a machine runs."""
    return {
        ETCD_ROLE: etcd_pod(cluster, machine, image_registry, name_generator),
        API_SERVER_ROLE: api_server_pod(cluster, machine, image_registry, name_generator),
    }


def service_templates(cluster, machine):
    """Role to Service for every service a machine needs."""
    return {ETCD_ROLE: etcd_service(cluster, machine)}
