"""Operator configuration read from the environment."""

import logging
import os

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _env_bool(name, default):
    return os.getenv(name, default).lower() == "true"


class OperatorConfig(BaseModel):
    """Runtime settings for the operator process."""

    log_level: str = Field(default="INFO", description="Root logging level")
    worker_limit: int = Field(default=5, ge=1, description="Concurrent reconcile workers")
    posting_enabled: bool = Field(default=False, description="Post kopf log records as events")
    server_timeout: int = Field(default=60, ge=1, description="Watch server timeout in seconds")
    request_timeout: float = Field(default=30.0, gt=0, description="Timeout for a single store call")
    requeue_base_delay: float = Field(default=5.0, gt=0, description="First retry delay in seconds")
    requeue_max_delay: float = Field(default=300.0, gt=0, description="Retry delay cap in seconds")
    manage_crds: bool = Field(default=True, description="Apply CRDs on startup")
    generate_crd_files: bool = Field(default=False, description="Write CRD YAML on startup")
    image_registry: str = Field(
        default="registry.k8s.io", description="Registry of the etcd and API server images"
    )

    @classmethod
    def from_env(cls):
        """Build the configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            worker_limit=int(os.getenv("WORKER_LIMIT", "5")),
            posting_enabled=_env_bool("POSTING_ENABLED", "false"),
            server_timeout=int(os.getenv("SERVER_TIMEOUT", "60")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
            requeue_base_delay=float(os.getenv("REQUEUE_BASE_DELAY", "5")),
            requeue_max_delay=float(os.getenv("REQUEUE_MAX_DELAY", "300")),
            manage_crds=_env_bool("MANAGE_CRDS", "true"),
            generate_crd_files=_env_bool("GENERATE_CRD_FILES", "false"),
            image_registry=os.getenv("IMAGE_REGISTRY", "registry.k8s.io"),
        )


def load_kube_config():
    """Load in-cluster Kubernetes config, falling back to the local kubeconfig."""
    import kubernetes

    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kubernetes.config.ConfigException:
        try:
            kubernetes.config.load_kube_config()
            logger.info("Loaded local Kubernetes config")
        except Exception as e:
            logger.warning(f"Could not load Kubernetes config: {e}")
