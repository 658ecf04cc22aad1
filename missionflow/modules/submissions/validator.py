"""
Submission validation per mission type.

The engine only advances a record when the configured validator returns
`ok`. `DefaultSubmissionValidator` implements the stock rules for every
`MissionType`, reading thresholds from the mission's `settings`:

    COMPLETE_QUIZ    score >= passing_score (default 70)
    WATCH_VIDEO      watched share >= watch_threshold (default 0.9)
    UPLOAD_FILE      allowed_formats, max_file_size_mb, required_files
    SUBMIT_FORM      every field marked `required` has a non-empty response
    CUSTOM           `content` present unless submission_format == "none"
    ATTEND_*, EXTERNAL_ACTION   accepted as-is (confirmation happens elsewhere)

Every failed rule is reported, not just the first one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from missionflow.database.models import MissionType


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def passed(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def failed(cls, errors: List[str]) -> ValidationResult:
        return cls(ok=not errors, errors=list(errors))


class SubmissionValidator(Protocol):
    def validate(
        self,
        mission_type: MissionType,
        settings: Mapping[str, Any],
        submission: Mapping[str, Any],
    ) -> ValidationResult: ...


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class DefaultSubmissionValidator:
    """Stock per-type rules; unknown or lenient types always pass."""

    DEFAULT_PASSING_SCORE = 70
    DEFAULT_WATCH_THRESHOLD = 0.9
    DEFAULT_ALLOWED_FORMATS = ("pdf", "docx")
    DEFAULT_MAX_FILE_SIZE_MB = 10
    DEFAULT_REQUIRED_FILES = 1

    def __init__(self) -> None:
        self._rules: Dict[
            MissionType, Callable[[Mapping[str, Any], Mapping[str, Any]], List[str]]
        ] = {
            MissionType.COMPLETE_QUIZ: self._check_quiz,
            MissionType.WATCH_VIDEO: self._check_video,
            MissionType.UPLOAD_FILE: self._check_upload,
            MissionType.SUBMIT_FORM: self._check_form,
            MissionType.CUSTOM: self._check_custom,
        }

    def validate(
        self,
        mission_type: MissionType,
        settings: Mapping[str, Any],
        submission: Mapping[str, Any],
    ) -> ValidationResult:
        rule = self._rules.get(mission_type)
        if rule is None:
            return ValidationResult.passed()
        return ValidationResult.failed(rule(settings or {}, submission or {}))

    # ------------------------------------------------------------------ #
    # Rules
    # ------------------------------------------------------------------ #

    def _check_quiz(self, settings: Mapping[str, Any], submission: Mapping[str, Any]) -> List[str]:
        passing = _number(settings.get("passing_score"))
        if passing is None:
            passing = self.DEFAULT_PASSING_SCORE

        score = _number(submission.get("score"))
        if score is None:
            return ["score is required"]
        if score < passing:
            return [f"score {score:g} is below the passing score {passing:g}"]
        return []

    def _check_video(self, settings: Mapping[str, Any], submission: Mapping[str, Any]) -> List[str]:
        threshold = _number(settings.get("watch_threshold"))
        if threshold is None:
            threshold = self.DEFAULT_WATCH_THRESHOLD
        if threshold > 1:
            # accept percent-style thresholds such as 90
            threshold = threshold / 100

        watched = _number(submission.get("watched_duration"))
        total = _number(submission.get("total_duration"))
        if watched is not None and total:
            share = watched / total
        else:
            percentage = _number(submission.get("watch_percentage"))
            if percentage is None:
                return ["watch progress is required"]
            share = percentage / 100

        if share < threshold:
            return [f"watched {share:.0%} of the video, {threshold:.0%} required"]
        return []

    def _check_upload(self, settings: Mapping[str, Any], submission: Mapping[str, Any]) -> List[str]:
        allowed = [
            fmt.lower().lstrip(".")
            for fmt in settings.get("allowed_formats") or self.DEFAULT_ALLOWED_FORMATS
        ]
        max_mb = _number(settings.get("max_file_size_mb"))
        if max_mb is None:
            max_mb = self.DEFAULT_MAX_FILE_SIZE_MB
        required_setting = _number(settings.get("required_files"))
        required = int(
            self.DEFAULT_REQUIRED_FILES if required_setting is None else required_setting
        )

        files = submission.get("files") or []
        errors: List[str] = []

        if len(files) < required:
            errors.append(f"{required} file(s) required, got {len(files)}")

        max_bytes = max_mb * 1024 * 1024
        for entry in files:
            name = str(entry.get("file_name") or "")
            extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
            if extension not in allowed:
                errors.append(
                    f"{name or 'file'}: format not allowed (allowed: {', '.join(allowed)})"
                )
            size = _number(entry.get("file_size")) or 0
            if size > max_bytes:
                errors.append(f"{name or 'file'}: exceeds {max_mb:g} MB")
        return errors

    def _check_form(self, settings: Mapping[str, Any], submission: Mapping[str, Any]) -> List[str]:
        responses = submission.get("responses") or {}
        errors: List[str] = []
        for spec in settings.get("fields") or []:
            if not spec.get("required"):
                continue
            key = spec.get("id") or spec.get("name")
            if _is_blank(responses.get(key)):
                errors.append(f"{spec.get('label') or key} is required")
        return errors

    def _check_custom(self, settings: Mapping[str, Any], submission: Mapping[str, Any]) -> List[str]:
        if settings.get("submission_format") == "none":
            return []
        if _is_blank(submission.get("content")):
            return ["content is required"]
        return []
