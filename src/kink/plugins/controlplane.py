"""Control plane plugin: runs the KinkControlPlane controller."""

import logging

import kopf

from kink.errors import CatalogError
from kink.plugins.base import PluginBase
from kink.reconciler import ControlPlaneReconciler
from kink.services.certificates import build_tree, get_certs
from kink.services.store import KubeStore
from kink.workqueue import Controller, WorkQueue

logger = logging.getLogger(__name__)


def post_event(obj, reason, message, warning=False):
    """Record a Kubernetes event on ``obj`` through kopf's event poster."""
    body = {
        "apiVersion": obj.apiVersion,
        "kind": obj.kind,
        "metadata": {
            "name": obj.metadata.name,
            "namespace": obj.metadata.namespace,
            "uid": obj.metadata.uid,
        },
    }
    try:
        if warning:
            kopf.warn(body, reason=reason, message=message)
        else:
            kopf.info(body, reason=reason, message=message)
    except LookupError:
        # Outside a running operator there is no event queue to post to.
        logger.debug(f"Event {reason} on {obj.key} not posted: {message}")


class ControlPlanePlugin(PluginBase):
    """Plugin for the KinkControlPlane CRD and the machines and credentials it owns."""

    def __init__(self):
        super().__init__()
        self.store = None
        self.reconciler = None
        self.queue = None
        self.controller = None

    @property
    def name(self):
        return "controlplane"

    @property
    def version(self):
        return "1.0.0"

    @property
    def description(self):
        return "Provisions control plane credentials and KinkMachines for Cluster API clusters"

    @property
    def models(self):
        from kink.models.controlplane import KinkControlPlaneSpec
        from kink.models.infrastructure import KinkMachineSpec

        return [KinkControlPlaneSpec, KinkMachineSpec]

    def _initialise_plugin(self):
        try:
            tree = build_tree(get_certs())
            logger.info(f"Certificate catalog: {', '.join(tree.names())}")
        except CatalogError as e:
            logger.error(f"Certificate catalog is invalid, control planes will report it: {e}")

        self.store = KubeStore(request_timeout=self.config.request_timeout)
        self.reconciler = ControlPlaneReconciler(self.store, recorder=post_event)
        self.queue = WorkQueue(
            base_delay=self.config.requeue_base_delay,
            max_delay=self.config.requeue_max_delay,
        )
        self.controller = Controller(
            self.reconciler.reconcile,
            self.queue,
            workers=self.config.worker_limit,
            name="kinkcontrolplane",
        )

    async def start(self):
        await self.controller.start()

    async def stop(self):
        if self.controller is not None:
            await self.controller.stop()

    def register_handlers(self):
        logger.info("Registering control plane handlers...")
        from kink.handlers import controlplane_handler  # noqa: F401
