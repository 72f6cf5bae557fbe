from __future__ import annotations

from typing import Any


class ApprovalError(Exception):
    code = "approval_failed"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NoticeNotFoundError(ApprovalError):
    code = "notice_not_found"
    status_code = 404


class LeadNotFoundError(ApprovalError):
    code = "lead_not_found"
    status_code = 404


class NotApprovalNoticeError(ApprovalError):
    code = "not_an_approval_notice"
    status_code = 422


class ApprovalForbiddenError(ApprovalError):
    code = "approval_forbidden"
    status_code = 403


class InvalidApprovalMetadataError(ApprovalError):
    code = "invalid_approval_metadata"
    status_code = 422


class ReassignmentPendingError(ApprovalError):
    code = "reassignment_pending"
    status_code = 409


class EntityMutationError(ApprovalError):
    code = "entity_mutation_failed"
    status_code = 502


class InvalidReassignmentRequestError(ApprovalError):
    code = "invalid_reassignment_request"
    status_code = 422
