"""Infrastructure plugin: KinkCluster readiness and the KinkMachine controller."""

import logging

from kink.machine_reconciler import MachineReconciler
from kink.plugins.base import PluginBase
from kink.plugins.controlplane import post_event
from kink.services.store import KubeStore
from kink.workqueue import Controller, WorkQueue

logger = logging.getLogger(__name__)


class InfrastructurePlugin(PluginBase):
    """Plugin for the KinkCluster CRD and the pods each KinkMachine runs."""

    def __init__(self):
        super().__init__()
        self.store = None
        self.reconciler = None
        self.queue = None
        self.controller = None

    @property
    def name(self):
        return "infrastructure"

    @property
    def version(self):
        return "1.0.0"

    @property
    def description(self):
        return "Reports KinkCluster infrastructure ready and runs KinkMachine pods"

    @property
    def models(self):
        from kink.models.infrastructure import KinkClusterSpec

        return [KinkClusterSpec]

    def _initialise_plugin(self):
        self.store = KubeStore(request_timeout=self.config.request_timeout)
        self.reconciler = MachineReconciler(
            self.store,
            image_registry=self.config.image_registry,
            recorder=post_event,
        )
        self.queue = WorkQueue(
            base_delay=self.config.requeue_base_delay,
            max_delay=self.config.requeue_max_delay,
        )
        self.controller = Controller(
            self.reconciler.reconcile,
            self.queue,
            workers=self.config.worker_limit,
            name="kinkmachine",
        )

    async def start(self):
        await self.controller.start()

    async def stop(self):
        if self.controller is not None:
            await self.controller.stop()

    def register_handlers(self):
        logger.info("Registering infrastructure handlers...")
        from kink.handlers import infrastructure_handler  # noqa: F401
        from kink.handlers import machine_handler  # noqa: F401
