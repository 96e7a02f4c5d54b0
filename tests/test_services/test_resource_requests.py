"""Tests for the resource request workflow (submit, review, single-writer transition)."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from scopeguard.authz.roles import RoleName, ScopeType
from scopeguard.errors import AccessDenied, Conflict, DenialReason, NotFound, ValidationError
from scopeguard.models.tenancy import SharedProject
from scopeguard.models.workflow import Notification, ResourceRequest
from scopeguard.services.resource_requests import (
    RequestEntry,
    RequestStatus,
    ResourceRequestWorkflow,
    parse_review_action,
)


class FailingEmailSink:
    def send(self, to, subject, body):
        raise RuntimeError("relay down")


@pytest.fixture
def workflow(db_session, policy):
    return ResourceRequestWorkflow(db_session, policy)


@pytest.fixture
def pending(workflow, tenant):
    """mona asks for sam (Sales) to join Portal (Engineering)."""
    [request] = workflow.submit(
        tenant.mona, tenant.org, tenant.portal, [RequestEntry(tenant.sam, tenant.sales, "needs access")]
    )
    return request


def _notifications(db_session, user_id, notification_type=None):
    stmt = select(Notification).where(Notification.user_id == user_id)
    if notification_type is not None:
        stmt = stmt.where(Notification.type == notification_type)
    return db_session.scalars(stmt).all()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("approve", RequestStatus.APPROVED),
        ("Approved", RequestStatus.APPROVED),
        (" reject ", RequestStatus.REJECTED),
        ("rejected", RequestStatus.REJECTED),
    ],
)
def test_parse_review_action(value, expected):
    assert parse_review_action(value) is expected


def test_parse_review_action_rejects_unknown():
    with pytest.raises(ValidationError):
        parse_review_action("maybe")


def test_submit_creates_pending_request(pending, tenant):
    assert pending.id is not None
    assert pending.status == "pending"
    assert pending.requester_id == tenant.mona
    assert pending.user_department_id == tenant.sales


def test_duplicate_pending_request_is_conflict(workflow, pending, tenant):
    with pytest.raises(Conflict) as exc_info:
        workflow.submit(tenant.mona, tenant.org, tenant.portal, [RequestEntry(tenant.sam, tenant.sales)])
    assert exc_info.value.current_status == "pending"


def test_request_for_existing_member_is_conflict(workflow, tenant):
    with pytest.raises(Conflict):
        workflow.submit(tenant.mona, tenant.org, tenant.portal, [RequestEntry(tenant.ed, tenant.eng)])


def test_user_must_belong_to_department(workflow, tenant):
    with pytest.raises(ValidationError):
        workflow.submit(tenant.mona, tenant.org, tenant.portal, [RequestEntry(tenant.sam, tenant.eng)])


def test_department_of_other_tenant_is_not_found(workflow, tenant):
    with pytest.raises(NotFound):
        workflow.submit(tenant.mona, tenant.org, tenant.portal, [RequestEntry(tenant.sam, tenant.other_dept)])


def test_empty_submission_is_validation_error(workflow, tenant):
    with pytest.raises(ValidationError):
        workflow.submit(tenant.mona, tenant.org, tenant.portal, [])


def test_member_cannot_submit(workflow, tenant):
    with pytest.raises(AccessDenied) as exc_info:
        workflow.submit(tenant.ed, tenant.org, tenant.portal, [RequestEntry(tenant.sam, tenant.sales)])
    assert exc_info.value.reason is DenialReason.INSUFFICIENT_ROLE


def test_approval_grants_membership_and_shares_project(workflow, pending, tenant, db_session):
    outcome = workflow.review(tenant.mona, tenant.org, pending.id, "approve", "welcome")

    assert outcome.status is RequestStatus.APPROVED
    assert outcome.membership_created
    assert outcome.sharing_created
    assert outcome.request.status == "approved"
    assert outcome.request.reviewed_by == tenant.mona
    assert outcome.request.reviewed_at is not None

    assert workflow.store.get_role(tenant.sam, ScopeType.PROJECT, tenant.portal) is RoleName.MEMBER
    shares = db_session.scalars(
        select(SharedProject).where(
            SharedProject.project_id == tenant.portal, SharedProject.department_id == tenant.sales
        )
    ).all()
    assert len(shares) == 1

    # sam was only in Sales, so Engineering access is propagated as well
    assert outcome.propagation.department_membership_created
    assert workflow.store.get_role(tenant.sam, ScopeType.DEPARTMENT, tenant.eng) is RoleName.MEMBER

    success = _notifications(db_session, tenant.sam, "success")
    assert len(success) == 1
    assert success[0].title == "Project Access Approved"
    assert "welcome" in success[0].message


def test_second_approval_is_conflict_without_new_side_effects(workflow, pending, tenant, db_session):
    workflow.review(tenant.mona, tenant.org, pending.id, "approve")

    with pytest.raises(Conflict) as exc_info:
        workflow.review(tenant.mona, tenant.org, pending.id, "approve")

    assert exc_info.value.current_status == "approved"
    assert len(_notifications(db_session, tenant.sam, "success")) == 1


def test_rejection_has_no_membership_side_effects(workflow, pending, tenant, db_session):
    outcome = workflow.review(tenant.mona, tenant.org, pending.id, "reject", "not now")

    assert outcome.status is RequestStatus.REJECTED
    assert not outcome.membership_created
    assert not outcome.sharing_created
    assert workflow.store.get_role(tenant.sam, ScopeType.PROJECT, tenant.portal) is None
    assert db_session.scalar(select(func.count()).select_from(SharedProject)) == 0

    errors = _notifications(db_session, tenant.sam, "error")
    assert [n.title for n in errors] == ["Project Access Rejected"]


def test_transition_has_a_single_winner(workflow, pending, tenant, db_session):
    assert workflow.transition(pending.id, RequestStatus.APPROVED, tenant.mona, None)
    assert not workflow.transition(pending.id, RequestStatus.REJECTED, tenant.alice, None)
    db_session.commit()

    status = db_session.scalar(select(ResourceRequest.status).where(ResourceRequest.id == pending.id))
    assert status == "approved"


def test_losing_reviewer_gets_winner_status(workflow, pending, tenant, db_session):
    original = workflow.transition

    def racing(request_id, new_status, reviewer_id, notes):
        # another reviewer commits a rejection between the read and the write
        assert original(request_id, RequestStatus.REJECTED, tenant.alice, None)
        db_session.commit()
        return original(request_id, new_status, reviewer_id, notes)

    workflow.transition = racing
    with pytest.raises(Conflict) as exc_info:
        workflow.review(tenant.mona, tenant.org, pending.id, "approve")

    assert exc_info.value.current_status == "rejected"
    assert workflow.store.get_role(tenant.sam, ScopeType.PROJECT, tenant.portal) is None


def test_reviewer_must_be_assigned_to_project(workflow, pending, tenant):
    # oscar manages the organization but holds no Admin role
    with pytest.raises(AccessDenied) as exc_info:
        workflow.review(tenant.oscar, tenant.org, pending.id, "approve")
    assert exc_info.value.reason is DenialReason.NOT_SCOPED


def test_admin_reviews_without_project_membership(workflow, pending, tenant):
    outcome = workflow.review(tenant.dana, tenant.org, pending.id, "approve")
    assert outcome.membership_created


def test_member_cannot_review(workflow, pending, tenant):
    with pytest.raises(AccessDenied) as exc_info:
        workflow.review(tenant.ed, tenant.org, pending.id, "approve")
    assert exc_info.value.reason is DenialReason.INSUFFICIENT_ROLE


def test_cannot_review_own_request(workflow, tenant):
    [request] = workflow.submit(tenant.alice, tenant.org, tenant.crm, [RequestEntry(tenant.dana, tenant.eng)])
    with pytest.raises(AccessDenied) as exc_info:
        workflow.review(tenant.dana, tenant.org, request.id, "approve")
    assert exc_info.value.reason is DenialReason.SELF_MODIFICATION


def test_request_of_other_tenant_is_not_found(workflow, pending, tenant):
    with pytest.raises(NotFound):
        workflow.review(tenant.gina, tenant.other_org, pending.id, "approve")


def test_failing_email_does_not_fail_review(db_session, policy, pending, tenant):
    workflow = ResourceRequestWorkflow(db_session, policy, FailingEmailSink())
    outcome = workflow.review(tenant.mona, tenant.org, pending.id, "approve")

    assert outcome.status is RequestStatus.APPROVED
    assert outcome.notified
    assert not outcome.emailed


def test_list_pending_only_shows_reviewable_requests(workflow, pending, tenant):
    assert [r.id for r in workflow.list_pending(tenant.mona, tenant.org)] == [pending.id]
    assert [r.id for r in workflow.list_pending(tenant.alice, tenant.org)] == [pending.id]
    assert workflow.list_pending(tenant.ed, tenant.org) == []
    assert workflow.list_pending(tenant.oscar, tenant.org) == []

    workflow.review(tenant.mona, tenant.org, pending.id, "reject")
    assert workflow.list_pending(tenant.mona, tenant.org) == []


def test_processed_request_outcome_is_hidden_from_non_reviewers(workflow, pending, tenant):
    workflow.review(tenant.mona, tenant.org, pending.id, "approve")

    with pytest.raises(AccessDenied) as exc_info:
        workflow.review(tenant.ed, tenant.org, pending.id, "reject")
    assert exc_info.value.reason is DenialReason.INSUFFICIENT_ROLE


def test_review_time_is_naive_utc(workflow, pending, tenant):
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    outcome = workflow.review(tenant.mona, tenant.org, pending.id, "reject")

    reviewed_at = outcome.request.reviewed_at
    assert reviewed_at.tzinfo is None
    assert before - timedelta(seconds=1) <= reviewed_at <= before + timedelta(minutes=1)
