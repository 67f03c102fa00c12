"""
Processor registry construction.

Builds a fresh registry per application or worker process; nothing is
registered at import time.
"""

from api.config.logging import get_logger
from api.config.settings import Settings
from api.v1.core.registries import ProcessorRegistry
from api.v1.jobs.processors import SendEmailProcessor

logger = get_logger(__name__)


def build_processor_registry(settings: Settings) -> ProcessorRegistry:
    """Register all job processors and freeze the registry outside development."""
    registry = ProcessorRegistry()

    registry.register("sendEmail", SendEmailProcessor(settings))

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        registry.freeze()

    logger.info("Processors registered", registered_processors=registry.list())
    return registry
