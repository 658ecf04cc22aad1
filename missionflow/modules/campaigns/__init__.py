"""Campaign authoring: missions, dependencies, competencies, ranks, variants."""

from missionflow.modules.campaigns.service import CampaignService

__all__ = ["CampaignService"]
