"""Research against the search-augmented model."""

from callprep.research.entity import (
    CompanyResearchOptions,
    EntityResearcher,
    ProspectResearchOptions,
    research_company,
    research_prospect,
)
from callprep.research.multi_pass import (
    MultiPassOptions,
    MultiPassResearcher,
    perform_multi_pass_research,
)

__all__ = [
    "CompanyResearchOptions",
    "EntityResearcher",
    "MultiPassOptions",
    "MultiPassResearcher",
    "ProspectResearchOptions",
    "perform_multi_pass_research",
    "research_company",
    "research_prospect",
]
