"""
Job registry initialization.

Registers one handler per job type with the global job registry.
"""

from studyjobs.config.logging import get_logger
from studyjobs.config.settings import Settings, settings as default_settings
from studyjobs.v1.core.registries import JobRegistry, job_registry
from studyjobs.v1.infra.jobs.handlers import (
    ContentGenerationHandler,
    DistractorGenerationHandler,
    HierarchyGenerationHandler,
)
from studyjobs.v1.infra.jobs.models import JobType
from studyjobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


def build_handlers(settings: Settings, store: JobStore | None = None) -> dict:
    store = store or JobStore(settings)
    return {
        JobType.CONTENT_GENERATION: ContentGenerationHandler(settings, store=store),
        JobType.DISTRACTOR_GENERATION: DistractorGenerationHandler(settings),
        JobType.HIERARCHY_GENERATION: HierarchyGenerationHandler(settings, store=store),
    }


def register_job_handlers(
    registry: JobRegistry = job_registry,
    settings: Settings = default_settings,
    store: JobStore | None = None,
) -> JobRegistry:
    """Register all job handlers; types that already have one are left alone."""
    for job_type, handler in build_handlers(settings, store).items():
        if job_type.value not in registry:
            registry.register(job_type, handler)

    registry.ensure_complete()
    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry
