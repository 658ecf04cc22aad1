from missionflow.modules.participants.service import ParticipantService

__all__ = ["ParticipantService"]
