import kopf
import logging

from kink.config import OperatorConfig, load_kube_config
from kink.crd.generator import KinkCRDManager
from kink.plugins.registry import PluginRegistry

config = OperatorConfig.from_env()

logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

plugin_registry = None


def apply_crds(config):
    """Apply the operator's CRDs, optionally writing them to disk first."""
    try:
        crd_manager = KinkCRDManager()
        if config.generate_crd_files:
            logger.info("Generating CRD files and applying to cluster")
            crd_manager.generate_all_crds(force=True)

        if crd_manager.apply_crds_to_cluster():
            logger.info("CRDs applied to cluster successfully")
        else:
            logger.warning("No CRDs were applied to cluster")
    except Exception as e:
        logger.error(f"Failed to apply CRDs to cluster: {e}")


@kopf.on.startup()
async def startup_fn(settings: kopf.OperatorSettings, **kwargs):
    """Configure the operator and start the plugin controllers."""
    global plugin_registry

    logger.info("Kink Operator is starting up...")

    load_kube_config()

    if config.manage_crds:
        apply_crds(config)

    plugin_registry = PluginRegistry()

    discovered_count = plugin_registry.discover_plugins()
    if discovered_count == 0:
        logger.error("No plugins discovered - operator will have no functionality")
        raise RuntimeError("No plugins available")

    init_results = plugin_registry.initialise_all_plugins(config)
    if not any(init_results.values()):
        logger.error("No plugins initialized successfully")
        raise RuntimeError("Plugin initialization failed")

    plugin_registry.register_all_handlers()
    await plugin_registry.start_all_plugins()

    settings.batching.worker_limit = config.worker_limit
    settings.posting.enabled = config.posting_enabled
    settings.watching.server_timeout = config.server_timeout

    logger.info(f"Initialised plugins: {list(init_results.keys())}")
    logger.info(f"Worker limit: {settings.batching.worker_limit}")
    logger.info(f"Posting enabled: {settings.posting.enabled}")
    logger.info("Kink Operator startup complete")


@kopf.on.cleanup()
async def cleanup_fn(**kwargs):
    """Stop controllers and release plugin resources."""
    logger.info("Kink Operator is shutting down...")

    if plugin_registry:
        await plugin_registry.stop_all_plugins()

    logger.info("Kink Operator shutdown complete")


def main():
    try:
        kopf.run(clusterwide=True)
    except KeyboardInterrupt:
        logger.info("Operator stopped by user")
    except Exception as e:
        logger.error(f"Operator failed: {e}")
        raise


if __name__ == "__main__":
    main()
