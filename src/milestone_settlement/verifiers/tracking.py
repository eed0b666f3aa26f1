"""Work-tracking and billing verifiers: Jira tickets and paid invoices."""

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

COMPLETED_TICKET_STATUSES = frozenset({"done", "closed", "resolved", "complete"})
PAID_INVOICE_STATUSES = frozenset({"paid", "settled", "complete"})

JIRA_TICKET_SCHEMA = {
    "type": "object",
    "properties": {
        "project": {"type": "string", "minLength": 1},
        "ticket": {"type": "string", "minLength": 1},
        "status": {"type": "string"},
        "assignee": {"type": "string"},
    },
    "required": ["project", "ticket", "status"],
}

INVOICE_SCHEMA = {
    "type": "object",
    "properties": {
        "invoiceId": {"type": "string", "minLength": 1},
        "amount": {"type": ["integer", "string"]},
        "currency": {"type": "string"},
        "status": {"type": "string"},
        "paidAt": {"type": "string"},
    },
    "required": ["invoiceId", "status"],
}


class JiraVerifier:
    """Accepts ``ticket_completed`` events whose status means done."""

    source = SourceKind.JIRA

    async def verify(self, submission: EvidenceSubmission) -> EvidenceVerdict:
        if submission.event_type != "ticket_completed":
            return EvidenceVerdict.reject(f"Unknown Jira event: {submission.event_type}")

        evidence = submission.payload
        try:
            errors = shape_errors(JIRA_TICKET_SCHEMA, evidence)
        except jsonschema.SchemaError as exc:
            logger.error("verifier.jira.invalid_schema", error=str(exc))
            return EvidenceVerdict(accepted=False, reason="Jira verifier misconfigured", error="INVALID_SCHEMA")

        if errors:
            return EvidenceVerdict.reject(f"Missing required Jira fields: {'; '.join(errors)}")

        if evidence["status"].lower() not in COMPLETED_TICKET_STATUSES:
            return EvidenceVerdict.reject(f"Ticket status is {evidence['status']}, not completed")

        return EvidenceVerdict.accept({
            "type": "jira_ticket",
            "project": evidence["project"],
            "ticket": evidence["ticket"],
            "status": evidence["status"],
        })


class InvoiceVerifier:
    """Accepts ``invoice_paid`` events for a settled invoice."""

    source = SourceKind.INVOICE

    async def verify(self, submission: EvidenceSubmission) -> EvidenceVerdict:
        if submission.event_type != "invoice_paid":
            return EvidenceVerdict.reject(f"Unknown invoice event: {submission.event_type}")

        evidence = submission.payload
        try:
            errors = shape_errors(INVOICE_SCHEMA, evidence)
        except jsonschema.SchemaError as exc:
            logger.error("verifier.invoice.invalid_schema", error=str(exc))
            return EvidenceVerdict(accepted=False, reason="Invoice verifier misconfigured", error="INVALID_SCHEMA")

        if errors:
            return EvidenceVerdict.reject(f"Missing required invoice fields: {'; '.join(errors)}")

        if evidence["status"].lower() not in PAID_INVOICE_STATUSES:
            return EvidenceVerdict.reject(f"Invoice status is {evidence['status']}, not paid")

        # Amount stays whatever the billing system sent; it is identity, not money we move.
        return EvidenceVerdict.accept({
            "type": "invoice",
            "invoiceId": evidence["invoiceId"],
            "amount": evidence.get("amount"),
            "currency": evidence.get("currency"),
            "paidAt": evidence.get("paidAt"),
        })
