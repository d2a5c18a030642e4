"""Base plugin architecture for the kink operator."""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class PluginBase(ABC):
    """Base class for all kink plugins."""

    def __init__(self):
        self._initialised = False
        self._models_registered = False
        self.config = None

    @property
    @abstractmethod
    def name(self):
        """Unique name for this plugin."""
        pass

    @property
    @abstractmethod
    def version(self):
        """Plugin version."""
        pass

    @property
    @abstractmethod
    def description(self):
        """Human-readable description of what this plugin does."""
        pass

    @property
    @abstractmethod
    def models(self):
        """Return list of CRD models this plugin provides."""
        pass

    @property
    def initialised(self):
        return self._initialised

    def initialise(self, config):
        """Initialise the plugin. Called once during operator startup.

        Returns:
            bool: True if initialisation successful, False otherwise
        """
        if self._initialised:
            logger.warning(f"Plugin {self.name} already initialised")
            return True

        try:
            logger.info(f"Initialising plugin: {self.name} v{self.version}")
            self.config = config

            if not self._models_registered:
                self._register_models()
                self._models_registered = True

            self._initialise_plugin()

            self._initialised = True
            logger.info(f"Plugin {self.name} initialised successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to initialise plugin {self.name}: {e}")
            return False

    def _register_models(self):
        """Check this plugin's models went through the CRD registry."""
        for model in self.models:
            if not hasattr(model, "_crd_group"):
                logger.warning(
                    f"Model {model.__name__} not properly decorated with @CRDRegistry.register"
                )
                continue

            logger.debug(f"Model {model.__name__} registered by plugin {self.name}")

    def _initialise_plugin(self):
        """Override this method for custom plugin initialization logic."""
        pass

    async def start(self):
        """Start background work. Called once kopf's event loop is running."""
        pass

    async def stop(self):
        """Stop background work started by :meth:`start`."""
        pass

    @abstractmethod
    def register_handlers(self):
        """Import the kopf handler modules of this plugin."""
        pass

    def get_health_status(self):
        """Get health status of this plugin."""
        return {
            "name": self.name,
            "version": self.version,
            "initialised": self._initialised,
            "models_count": len(self.models),
            "status": "healthy" if self._initialised else "not_initialised",
        }
