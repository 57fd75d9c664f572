"""
Command Center — Capability Catalog

Static table mapping a capability key to the skills, workflow phases and
workflow types it applies to. Built-in entries can be extended from the
``capabilities:`` config section; the catalog is read-only after that.

Config shape:
    capabilities:
      contract_review:
        name: Contract Review
        description: Reviewing term sheets and closing documents
        required_skills: [legal_analysis]
        supported_phases: [negotiation, closing]
        supported_workflows: [fundraising]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator

logger = logging.getLogger("cmdctr.capabilities")


@dataclass(frozen=True)
class CapabilityEntry:
    key: str
    name: str
    description: str
    required_skills: tuple[str, ...] = ()
    supported_phases: tuple[str, ...] = ()
    supported_workflows: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "required_skills": list(self.required_skills),
            "supported_phases": list(self.supported_phases),
            "supported_workflows": list(self.supported_workflows),
        }


def _entry(key, name, description, skills, phases, workflows) -> CapabilityEntry:
    return CapabilityEntry(
        key=key,
        name=name,
        description=description,
        required_skills=tuple(skills),
        supported_phases=tuple(phases),
        supported_workflows=tuple(workflows),
    )


BUILTIN_CAPABILITIES: tuple[CapabilityEntry, ...] = (
    # Fundraising
    _entry("investor_research", "Investor Research",
           "Deep research on investors, their portfolio, and investment thesis",
           ["market_research", "financial_analysis", "network_analysis"],
           ["fundraising"], ["fundraising"]),
    _entry("personalized_outreach", "Personalized Outreach",
           "Creating and sending personalized outreach messages",
           ["communication", "personalization", "email_automation"],
           ["fundraising", "sales", "marketing"], ["fundraising", "sales", "marketing"]),
    _entry("deal_flow_analysis", "Deal Flow Analysis",
           "Analyzing deal flow patterns and investor behavior",
           ["data_analysis", "pattern_recognition", "financial_modeling"],
           ["fundraising"], ["fundraising"]),
    _entry("network_analysis", "Network Analysis",
           "Mapping and analyzing investor networks and connections",
           ["network_analysis", "graph_theory", "relationship_mapping"],
           ["fundraising", "sales"], ["fundraising", "sales"]),
    _entry("financial_analysis", "Financial Analysis",
           "Analyzing financial data and investment patterns",
           ["financial_modeling", "data_analysis", "valuation"],
           ["fundraising", "finance"], ["fundraising", "finance"]),
    # Marketing
    _entry("content_creation", "Content Creation",
           "Creating marketing content and materials",
           ["copywriting", "design", "brand_strategy"],
           ["marketing"], ["marketing"]),
    _entry("campaign_management", "Campaign Management",
           "Managing marketing campaigns and automation",
           ["project_management", "automation", "analytics"],
           ["marketing"], ["marketing"]),
    # Sales
    _entry("lead_generation", "Lead Generation",
           "Identifying and qualifying sales leads",
           ["prospecting", "qualification", "research"],
           ["sales"], ["sales"]),
    _entry("sales_automation", "Sales Automation",
           "Automating sales processes and follow-ups",
           ["automation", "crm_management", "process_optimization"],
           ["sales"], ["sales"]),
    # Product
    _entry("feature_prioritization", "Feature Prioritization",
           "Prioritizing product features based on user feedback and business goals",
           ["product_management", "data_analysis", "user_research"],
           ["product"], ["product"]),
    _entry("user_research", "User Research",
           "Conducting user research and gathering feedback",
           ["research_methods", "data_analysis", "user_empathy"],
           ["product"], ["product"]),
)


class CapabilityCatalog:
    """Immutable lookup over capability entries."""

    def __init__(
        self,
        extra: dict[str, dict[str, Any]] | None = None,
        include_builtin: bool = True,
    ):
        entries: dict[str, CapabilityEntry] = {}
        if include_builtin:
            for entry in BUILTIN_CAPABILITIES:
                entries[entry.key] = entry
        for key, cfg in (extra or {}).items():
            if key in entries:
                logger.info("Capability %s overridden from config", key)
            entries[key] = CapabilityEntry(
                key=key,
                name=cfg.get("name", key),
                description=cfg.get("description", ""),
                required_skills=tuple(cfg.get("required_skills", ())),
                supported_phases=tuple(cfg.get("supported_phases", ())),
                supported_workflows=tuple(cfg.get("supported_workflows", ())),
            )
        self._entries = entries

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> CapabilityCatalog:
        return cls(extra=(config or {}).get("capabilities") or {})

    def get(self, key: str) -> CapabilityEntry | None:
        return self._entries.get(key)

    def list_all(self) -> list[CapabilityEntry]:
        return list(self._entries.values())

    def keys(self) -> list[str]:
        return list(self._entries)

    def for_phase(self, phase: str) -> list[CapabilityEntry]:
        return [e for e in self._entries.values() if phase in e.supported_phases]

    def for_workflow(self, workflow: str) -> list[CapabilityEntry]:
        return [e for e in self._entries.values() if workflow in e.supported_workflows]

    def supports(
        self,
        key: str,
        phase: str | None = None,
        workflow: str | None = None,
    ) -> bool:
        """True if the capability exists and applies to the given phase/workflow."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if phase is not None and phase not in entry.supported_phases:
            return False
        if workflow is not None and workflow not in entry.supported_workflows:
            return False
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CapabilityEntry]:
        return iter(list(self._entries.values()))
