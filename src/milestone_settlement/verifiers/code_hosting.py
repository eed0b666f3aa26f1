"""Code hosting verifiers — merged pull/merge requests as milestone proof.

Use case: "Ship the alpha release" — the milestone is proven when a PR
referencing it is merged on GitHub (or an MR on GitLab).

Verification flow:
    1. Check the event type is the merge event for this source.
    2. Validate the evidence shape against the source's JSON Schema.
    3. Fingerprint the identifying fields (repo/project, number, commit).

No external API calls — the ingestion boundary has already authenticated
the webhook; this layer only decides whether its content proves the claim.
"""

from __future__ import annotations

import jsonschema

from milestone_settlement.domain.enums import SourceKind
from milestone_settlement.domain.verifier_protocol import (
    EvidenceSubmission,
    EvidenceVerdict,
)
from milestone_settlement.logging_config import get_logger
from milestone_settlement.verifiers.shape import shape_errors

logger = get_logger(__name__)

GITHUB_PR_SCHEMA = {
    "type": "object",
    "properties": {
        "repo": {"type": "string", "minLength": 1},
        "pr": {"type": "integer", "minimum": 1},
        "commit": {"type": "string", "minLength": 1},
        "merged": {"type": "boolean"},
        "author": {"type": "string"},
    },
    "required": ["repo", "pr", "commit"],
}

GITLAB_MR_SCHEMA = {
    "type": "object",
    "properties": {
        "project": {"type": "string", "minLength": 1},
        "mr": {"type": "integer", "minimum": 1},
        "commit": {"type": "string", "minLength": 1},
    },
    "required": ["project", "mr", "commit"],
}


class GitHubVerifier:
    """Accepts ``pr_merged`` events for a merged pull request."""

    source = SourceKind.GITHUB

    async def verify(self, submission: EvidenceSubmission) -> EvidenceVerdict:
        if submission.event_type != "pr_merged":
            return EvidenceVerdict.reject(f"Unknown GitHub event: {submission.event_type}")

        evidence = submission.payload
        try:
            errors = shape_errors(GITHUB_PR_SCHEMA, evidence)
        except jsonschema.SchemaError as exc:
            logger.error("verifier.github.invalid_schema", error=str(exc))
            return EvidenceVerdict(accepted=False, reason="GitHub verifier misconfigured", error="INVALID_SCHEMA")

        if errors:
            return EvidenceVerdict.reject(f"Missing required GitHub fields: {'; '.join(errors)}")

        if evidence.get("merged") is not True:
            return EvidenceVerdict.reject("PR not merged")

        logger.debug("verifier.github.accepted", repo=evidence["repo"], pr=evidence["pr"])
        return EvidenceVerdict.accept({
            "type": "github_pr",
            "repo": evidence["repo"],
            "pr": evidence["pr"],
            "commit": evidence["commit"],
        })


class GitLabVerifier:
    """Accepts ``mr_merged`` events for a merged merge request."""

    source = SourceKind.GITLAB

    async def verify(self, submission: EvidenceSubmission) -> EvidenceVerdict:
        if submission.event_type != "mr_merged":
            return EvidenceVerdict.reject(f"Unknown GitLab event: {submission.event_type}")

        evidence = submission.payload
        try:
            errors = shape_errors(GITLAB_MR_SCHEMA, evidence)
        except jsonschema.SchemaError as exc:
            logger.error("verifier.gitlab.invalid_schema", error=str(exc))
            return EvidenceVerdict(accepted=False, reason="GitLab verifier misconfigured", error="INVALID_SCHEMA")

        if errors:
            return EvidenceVerdict.reject(f"Missing required GitLab fields: {'; '.join(errors)}")

        logger.debug("verifier.gitlab.accepted", project=evidence["project"], mr=evidence["mr"])
        return EvidenceVerdict.accept({"type": "gitlab_mr", **evidence})
