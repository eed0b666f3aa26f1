"""Unit tests for the GitHub and GitLab merge verifiers.

Tests cover:
    - Merged PR with complete fields -> accepted with a stable fingerprint
    - Unmerged PR -> rejected
    - Missing or mistyped fields -> rejected with the offending path
    - Wrong event type -> rejected
"""

from __future__ import annotations

import pytest

from milestone_settlement.domain.enums import EvidenceOutcome, SourceKind
from milestone_settlement.domain.verifier_protocol import EvidenceSubmission, fingerprint_evidence
from milestone_settlement.verifiers.code_hosting import GitHubVerifier, GitLabVerifier

MERGED_PR = {"repo": "acme/site", "pr": 42, "commit": "abc123", "merged": True, "author": "dev"}


def _github(payload: dict, event: str = "pr_merged") -> EvidenceSubmission:
    return EvidenceSubmission(source=SourceKind.GITHUB, event_type=event, payload=payload)


class TestGitHubVerifier:
    @pytest.mark.asyncio
    async def test_merged_pr_accepted(self) -> None:
        verdict = await GitHubVerifier().verify(_github(MERGED_PR))

        assert verdict.accepted is True
        assert verdict.outcome == EvidenceOutcome.ACCEPTED
        assert verdict.fingerprint == fingerprint_evidence(
            {"type": "github_pr", "repo": "acme/site", "pr": 42, "commit": "abc123"}
        )

    @pytest.mark.asyncio
    async def test_fingerprint_ignores_descriptive_fields(self) -> None:
        first = await GitHubVerifier().verify(_github(MERGED_PR))
        second = await GitHubVerifier().verify(_github({**MERGED_PR, "author": "someone-else"}))
        assert first.fingerprint == second.fingerprint

    @pytest.mark.asyncio
    async def test_unmerged_pr_rejected(self) -> None:
        verdict = await GitHubVerifier().verify(_github({**MERGED_PR, "merged": False}))

        assert verdict.accepted is False
        assert verdict.outcome == EvidenceOutcome.REJECTED
        assert verdict.reason == "PR not merged"
        assert verdict.fingerprint is None

    @pytest.mark.asyncio
    async def test_missing_commit_rejected(self) -> None:
        payload = {k: v for k, v in MERGED_PR.items() if k != "commit"}
        verdict = await GitHubVerifier().verify(_github(payload))

        assert verdict.accepted is False
        assert verdict.reason.startswith("Missing required GitHub fields")
        assert "commit" in verdict.reason

    @pytest.mark.asyncio
    async def test_string_pr_number_rejected(self) -> None:
        verdict = await GitHubVerifier().verify(_github({**MERGED_PR, "pr": "42"}))
        assert verdict.accepted is False
        assert "pr:" in verdict.reason

    @pytest.mark.asyncio
    async def test_unknown_event_rejected(self) -> None:
        verdict = await GitHubVerifier().verify(_github(MERGED_PR, event="pr_opened"))
        assert verdict.reason == "Unknown GitHub event: pr_opened"


class TestGitLabVerifier:
    @pytest.mark.asyncio
    async def test_merged_mr_accepted(self) -> None:
        submission = EvidenceSubmission(
            source=SourceKind.GITLAB,
            event_type="mr_merged",
            payload={"project": "acme/api", "mr": 7, "commit": "def456"},
        )
        verdict = await GitLabVerifier().verify(submission)

        assert verdict.accepted is True
        assert verdict.fingerprint == fingerprint_evidence(
            {"type": "gitlab_mr", "project": "acme/api", "mr": 7, "commit": "def456"}
        )

    @pytest.mark.asyncio
    async def test_missing_project_rejected(self) -> None:
        submission = EvidenceSubmission(
            source=SourceKind.GITLAB, event_type="mr_merged", payload={"mr": 7, "commit": "x"}
        )
        verdict = await GitLabVerifier().verify(submission)
        assert verdict.accepted is False
        assert "project" in verdict.reason
