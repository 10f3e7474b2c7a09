"""Research orchestration and the request pipeline."""

from callprep.coordinator.orchestrator import (
    CoordinatorOptions,
    ResearchCoordinator,
    orchestrate_research,
)
from callprep.coordinator.pipeline import ResearchPipeline

__all__ = [
    "CoordinatorOptions",
    "ResearchCoordinator",
    "ResearchPipeline",
    "orchestrate_research",
]
