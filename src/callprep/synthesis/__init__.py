"""Brief synthesis with the reasoning model."""

from callprep.synthesis.brief import BriefSynthesizer, generate_research_brief

__all__ = ["BriefSynthesizer", "generate_research_brief"]
