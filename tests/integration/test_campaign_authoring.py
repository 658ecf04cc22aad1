"""
Integration tests for campaign authoring and publishing.
"""

import pytest

from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

pytestmark = pytest.mark.integration


class TestPublish:
    async def test_cycle_blocks_publishing(self, container, builder, architect):
        # Arrange: drafts may hold a cycle; only publishing refuses it
        campaign_id = await builder.campaign(is_active=False)
        await builder.mission("a", experience=10)
        await builder.mission("b", experience=10)
        await builder.edge("a", "b")
        await builder.edge("b", "a")

        # Act
        with pytest.raises(ValidationError) as exc_info:
            await container.campaigns.publish(architect, campaign_id)

        # Assert
        errors = exc_info.value.errors
        assert exc_info.value.field == "campaign"
        assert any(error.startswith("Circular dependency detected") for error in errors)
        assert any("No starting mission" in error for error in errors)

        report = await container.campaigns.validate(architect, campaign_id)
        assert report["is_valid"] is False
        assert report["summary"]["cycles"] == 1

    async def test_empty_campaign_is_not_publishable(self, container, builder, architect):
        campaign_id = await builder.campaign()

        with pytest.raises(ValidationError) as exc_info:
            await container.campaigns.publish(architect, campaign_id)

        assert exc_info.value.errors == ["Campaign contains no missions"]

    async def test_healthy_campaign_publishes(self, container, builder, architect, recorder):
        campaign_id = await builder.campaign(is_active=False)
        await builder.mission("a", experience=10)
        await builder.mission("b", experience=20)
        await builder.edge("a", "b")
        recorder.watch("campaigns.published")

        report = await container.campaigns.publish(architect, campaign_id)

        assert report["is_valid"] is True
        assert report["health_score"] == 100
        assert recorder.named("campaigns.published") == [
            {"campaign_id": campaign_id, "health_score": 100, "actor_id": "architect-1"}
        ]

    async def test_officer_cannot_publish(self, container, builder, officer):
        campaign_id = await builder.campaign()

        with pytest.raises(PermissionDeniedError):
            await container.campaigns.publish(officer, campaign_id)


class TestDependencies:
    async def test_self_loop_is_rejected(self, container, builder, architect):
        campaign_id = await builder.campaign()
        mission_id = await builder.mission("a")

        with pytest.raises(ValidationError):
            await container.campaigns.add_dependency(architect, campaign_id, mission_id, mission_id)

    async def test_duplicate_edge_conflicts(self, container, builder):
        await builder.campaign()
        await builder.mission("a")
        await builder.mission("b")
        await builder.edge("a", "b")

        with pytest.raises(ConflictError) as exc_info:
            await builder.edge("a", "b")

        assert exc_info.value.reason is ConflictReason.ALREADY_EXISTS

    async def test_edge_across_campaigns_is_rejected(
        self, container, builder, new_builder, architect
    ):
        campaign_id = await builder.campaign()
        local = await builder.mission("a")
        other = new_builder()
        await other.campaign("Other")
        foreign = await other.mission("x")

        with pytest.raises(NotFoundError):
            await container.campaigns.add_dependency(architect, campaign_id, foreign, local)

    async def test_removing_an_edge_unlocks_nothing_retroactively(
        self, container, builder, register, as_cadet, architect
    ):
        campaign_id = await builder.campaign()
        await builder.mission("a")
        await builder.mission("b")
        await builder.edge("a", "b")

        removed = await container.campaigns.remove_dependency(
            architect, campaign_id, builder.ids["a"], builder.ids["b"]
        )
        await register("p-1", campaign_id)

        assert removed is True
        progress = await container.progression.get_progress(as_cadet("p-1"), "p-1", campaign_id)
        assert [m["status"] for m in progress] == ["AVAILABLE", "AVAILABLE"]


class TestMissions:
    async def test_negative_reward_is_rejected(self, builder):
        await builder.campaign()

        with pytest.raises(ValidationError):
            await builder.mission("a", experience=-5)

    async def test_unknown_competency(self, builder):
        await builder.campaign()

        with pytest.raises(NotFoundError):
            await builder.mission("a", competencies={"diplomacy": 5})

    async def test_duplicate_competency(self, container, architect):
        await container.campaigns.add_competency(architect, "leadership")

        with pytest.raises(ConflictError) as exc_info:
            await container.campaigns.add_competency(architect, "leadership")

        assert exc_info.value.reason is ConflictReason.ALREADY_EXISTS

    async def test_removed_mission_leaves_a_dangling_edge(
        self, container, builder, register, as_cadet, architect
    ):
        """z needs x and y; once x is deleted, completing y alone opens z."""
        # Arrange
        campaign_id = await builder.campaign()
        await builder.mission("x")
        await builder.mission("y")
        await builder.mission("z")
        await builder.edge("x", "z")
        await builder.edge("y", "z")

        # Act
        await container.campaigns.remove_mission(architect, builder.ids["x"])
        await register("p-1", campaign_id)
        result = await container.progression.submit(as_cadet("p-1"), "p-1", builder.ids["y"])

        # Assert
        assert result["unlocked"] == [builder.ids["z"]]

        report = await container.campaigns.validate(architect, campaign_id)
        assert report["summary"]["dangling_dependencies"] == 1
        assert report["summary"]["missions"] == 2

    async def test_duplicate_rank_level(self, container, architect):
        await container.campaigns.add_rank(architect, 1, "Recruit")

        with pytest.raises(ConflictError) as exc_info:
            await container.campaigns.add_rank(architect, 1, "Rookie")

        assert exc_info.value.reason is ConflictReason.ALREADY_EXISTS

    async def test_same_level_in_another_ladder(self, container, builder, architect):
        await container.campaigns.add_rank(architect, 1, "Recruit")
        campaign_id = await builder.campaign()

        created = await container.campaigns.add_rank(
            architect, 1, "Intern", campaign_id=campaign_id
        )

        assert created == {"level": 1, "name": "Intern", "campaign_id": campaign_id}
