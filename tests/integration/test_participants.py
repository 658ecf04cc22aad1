"""
Integration tests for participant registration and the profile read model.
"""

import pytest

from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    PermissionDeniedError,
)

pytestmark = pytest.mark.integration


class TestRegistration:
    async def test_self_registration(self, container, as_cadet, recorder):
        recorder.watch("participants.registered")

        created = await container.participants.register(as_cadet("p-1"), "p-1", "Ada")

        assert created == {
            "id": "p-1",
            "display_name": "Ada",
            "experience": 0,
            "currency": 0,
            "current_rank_level": 1,
        }
        assert recorder.named("participants.registered") == [{"participant_id": "p-1"}]

    async def test_cadet_cannot_register_someone_else(self, container, as_cadet):
        with pytest.raises(PermissionDeniedError):
            await container.participants.register(as_cadet("p-1"), "p-2", "Grace")

    async def test_manager_gets_a_generated_id(self, container, architect):
        created = await container.participants.register(architect, display_name="Linus")

        assert created["id"]
        profile = await container.participants.get_profile(architect, created["id"])
        assert profile["display_name"] == "Linus"

    async def test_duplicate_id_conflicts(self, container, register, architect):
        await register("p-1")

        with pytest.raises(ConflictError) as exc_info:
            await container.participants.register(architect, "p-1", "Again")

        assert exc_info.value.reason is ConflictReason.ALREADY_EXISTS


class TestProfile:
    async def test_profile_totals(self, container, builder, register, as_cadet, architect):
        # Arrange
        await container.campaigns.add_competency(architect, "empathy")
        campaign_id = await builder.campaign()
        await builder.mission("a", experience=10, currency=2, competencies={"empathy": 3})
        await builder.mission("b", experience=5)
        await register("p-1", campaign_id)
        cadet = as_cadet("p-1")

        # Act
        await container.progression.submit(cadet, "p-1", builder.ids["a"])
        await container.progression.submit(cadet, "p-1", builder.ids["b"])
        profile = await container.participants.get_profile(cadet, "p-1")

        # Assert
        assert profile["experience"] == 15
        assert profile["currency"] == 2
        assert profile["competencies"] == {"empathy": 3}
        assert profile["missions_completed"] == 2
        assert profile["is_sandbox"] is False

    async def test_profile_of_someone_else_needs_analytics(
        self, container, register, as_cadet, officer
    ):
        await register("p-1")
        await register("p-2")

        with pytest.raises(PermissionDeniedError):
            await container.participants.get_profile(as_cadet("p-1"), "p-2")

        assert (await container.participants.get_profile(officer, "p-2"))["id"] == "p-2"

    async def test_unknown_participant(self, container, architect):
        with pytest.raises(NotFoundError):
            await container.participants.get_profile(architect, "ghost")
