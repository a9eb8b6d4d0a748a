"""Tests for status transition tables."""

import pytest

from app.core.exceptions import InvalidStatusTransition
from app.models.campaign import EmailCampaign
from app.models.status import (
    ASSIGNMENT_TRANSITIONS,
    CAMPAIGN_TRANSITIONS,
    AssignmentStatus,
    CampaignStatus,
    check_transition,
    transition,
)


def test_allowed_and_forbidden_edges():
    assert check_transition("Campaign", CAMPAIGN_TRANSITIONS, CampaignStatus.SCHEDULED, "sending") == CampaignStatus.SENDING
    with pytest.raises(InvalidStatusTransition):
        check_transition("Campaign", CAMPAIGN_TRANSITIONS, CampaignStatus.SENT, CampaignStatus.SENDING)
    with pytest.raises(InvalidStatusTransition):
        check_transition("Assignment", ASSIGNMENT_TRANSITIONS, AssignmentStatus.EXPIRED, AssignmentStatus.ACTIVE)


def test_same_state_is_a_no_op():
    assert check_transition("Campaign", CAMPAIGN_TRANSITIONS, CampaignStatus.SENT, CampaignStatus.SENT) == CampaignStatus.SENT


def test_new_rows_accept_any_initial_state():
    assert check_transition("Campaign", CAMPAIGN_TRANSITIONS, None, CampaignStatus.SENDING) == CampaignStatus.SENDING


def test_unknown_status_value_is_rejected():
    with pytest.raises(ValueError):
        check_transition("Campaign", CAMPAIGN_TRANSITIONS, CampaignStatus.SCHEDULED, "paused")


def test_orm_attribute_is_validated():
    campaign = EmailCampaign(name="x", subject="x", content="x", status=CampaignStatus.SENT)
    with pytest.raises(InvalidStatusTransition):
        campaign.status = CampaignStatus.SCHEDULED


@pytest.mark.asyncio
async def test_conditional_update_rejects_invalid_edge(db):
    campaign = EmailCampaign(name="x", subject="x", content="x", status=CampaignStatus.SENT)
    db.add(campaign)
    await db.commit()

    with pytest.raises(InvalidStatusTransition) as exc:
        await transition(db, EmailCampaign, campaign.id, CampaignStatus.SENDING)

    assert exc.value.current == "sent"
    assert exc.value.target == "sending"


@pytest.mark.asyncio
async def test_conditional_update_applies_values(db):
    campaign = EmailCampaign(name="x", subject="x", content="x")
    db.add(campaign)
    await db.commit()

    await transition(db, EmailCampaign, campaign.id, CampaignStatus.FAILED, last_error="boom")
    await db.commit()

    stored = await db.get(EmailCampaign, campaign.id, populate_existing=True)
    assert stored.status == CampaignStatus.FAILED
    assert stored.last_error == "boom"
