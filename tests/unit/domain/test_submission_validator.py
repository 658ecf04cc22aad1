"""
Unit tests for DefaultSubmissionValidator.

Every mission type has its own rules; all failed rules are reported.
"""

import pytest

from missionflow.database.models import MissionType
from missionflow.modules.submissions import DefaultSubmissionValidator

MB = 1024 * 1024


@pytest.fixture
def validator() -> DefaultSubmissionValidator:
    return DefaultSubmissionValidator()


@pytest.mark.unit
@pytest.mark.domain
class TestQuiz:
    def test_passing_score_uses_default(self, validator):
        assert validator.validate(MissionType.COMPLETE_QUIZ, {}, {"score": 70}).ok

    def test_score_below_configured_threshold(self, validator):
        result = validator.validate(MissionType.COMPLETE_QUIZ, {"passing_score": 80}, {"score": 60})

        assert result.ok is False
        assert result.errors == ["score 60 is below the passing score 80"]

    def test_missing_score(self, validator):
        result = validator.validate(MissionType.COMPLETE_QUIZ, {}, {})

        assert result.errors == ["score is required"]


@pytest.mark.unit
@pytest.mark.domain
class TestVideo:
    def test_watched_share_from_durations(self, validator):
        result = validator.validate(
            MissionType.WATCH_VIDEO, {}, {"watched_duration": 50, "total_duration": 100}
        )

        assert result.errors == ["watched 50% of the video, 90% required"]

    def test_watch_percentage(self, validator):
        assert validator.validate(MissionType.WATCH_VIDEO, {}, {"watch_percentage": 95}).ok

    def test_percent_style_threshold(self, validator):
        result = validator.validate(
            MissionType.WATCH_VIDEO, {"watch_threshold": 80}, {"watch_percentage": 85}
        )

        assert result.ok

    def test_missing_progress(self, validator):
        assert validator.validate(MissionType.WATCH_VIDEO, {}, {}).errors == [
            "watch progress is required"
        ]


@pytest.mark.unit
@pytest.mark.domain
class TestUpload:
    def test_valid_pdf(self, validator):
        submission = {"files": [{"file_name": "cv.pdf", "file_size": 2 * MB}]}

        assert validator.validate(MissionType.UPLOAD_FILE, {}, submission).ok

    def test_every_failure_is_reported(self, validator):
        submission = {
            "files": [
                {"file_name": "tool.exe", "file_size": 100},
                {"file_name": "big.pdf", "file_size": 11 * MB},
            ]
        }

        result = validator.validate(MissionType.UPLOAD_FILE, {"required_files": 3}, submission)

        assert result.errors == [
            "3 file(s) required, got 2",
            "tool.exe: format not allowed (allowed: pdf, docx)",
            "big.pdf: exceeds 10 MB",
        ]

    def test_no_files(self, validator):
        result = validator.validate(MissionType.UPLOAD_FILE, {}, {})

        assert result.errors == ["1 file(s) required, got 0"]

    def test_custom_formats(self, validator):
        submission = {"files": [{"file_name": "photo.PNG", "file_size": 10}]}

        assert validator.validate(
            MissionType.UPLOAD_FILE, {"allowed_formats": [".png"]}, submission
        ).ok


@pytest.mark.unit
@pytest.mark.domain
class TestForm:
    SETTINGS = {
        "fields": [
            {"id": "team", "label": "Team", "required": True},
            {"name": "nickname", "required": True},
            {"id": "hobby", "label": "Hobby"},
        ]
    }

    def test_required_fields_must_be_answered(self, validator):
        result = validator.validate(
            MissionType.SUBMIT_FORM, self.SETTINGS, {"responses": {"team": "  "}}
        )

        assert result.errors == ["Team is required", "nickname is required"]

    def test_complete_form(self, validator):
        result = validator.validate(
            MissionType.SUBMIT_FORM,
            self.SETTINGS,
            {"responses": {"team": "Platform", "nickname": "Ace"}},
        )

        assert result.ok


@pytest.mark.unit
@pytest.mark.domain
class TestCustomAndLenientTypes:
    def test_custom_requires_content(self, validator):
        assert validator.validate(MissionType.CUSTOM, {}, {}).errors == ["content is required"]

    def test_custom_without_submission_format(self, validator):
        assert validator.validate(MissionType.CUSTOM, {"submission_format": "none"}, {}).ok

    @pytest.mark.parametrize(
        "mission_type",
        [MissionType.ATTEND_OFFLINE, MissionType.ATTEND_ONLINE, MissionType.EXTERNAL_ACTION],
    )
    def test_lenient_types_always_pass(self, validator, mission_type):
        assert validator.validate(mission_type, {}, {}).ok
