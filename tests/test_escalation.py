"""Tests for the escalation decision table."""

from datetime import timedelta

import pytest

from dosewatch.engine.escalation import (
    allowed_from,
    decide,
    follow_up_delay,
)
from dosewatch.utils.constants import EscalationDelays


def test_send_message_from_pending():
    """Sending moves pending to sent and schedules the voice step."""
    decision = decide("pending", "send_message")
    assert decision is not None
    assert decision.to_status == "sent"
    assert decision.follow_up == "voice_escalation"
    assert decision.follow_up_delay == timedelta(minutes=15)


def test_voice_escalation_from_sent():
    """The voice step only acts on a sent occurrence."""
    decision = decide("sent", "voice_escalation")
    assert decision.to_status == "voice_escalated"
    assert decision.follow_up == "caregiver_escalation"

    assert decide("voice_escalated", "voice_escalation") is None
    assert decide("pending", "voice_escalation") is None


def test_caregiver_escalation_is_last_step():
    """Caregiver escalation has no follow-up and may skip the voice step."""
    decision = decide("voice_escalated", "caregiver_escalation")
    assert decision.to_status == "caregiver_escalated"
    assert decision.follow_up is None
    assert decision.follow_up_delay is None

    assert decide("sent", "caregiver_escalation").to_status == "caregiver_escalated"


@pytest.mark.parametrize("status", ["confirmed", "skipped", "caregiver_escalated"])
@pytest.mark.parametrize(
    "trigger", ["send_message", "voice_escalation", "caregiver_escalation", "confirm", "skip"]
)
def test_terminal_statuses_reject_every_trigger(status, trigger):
    """Nothing acts on a terminal occurrence."""
    assert decide(status, trigger) is None


def test_confirm_only_after_sent():
    """A dose can be confirmed once the patient has been reminded."""
    assert decide("sent", "confirm").to_status == "confirmed"
    assert decide("voice_escalated", "confirm").to_status == "confirmed"
    assert decide("pending", "confirm") is None


def test_skip_from_any_open_status():
    """Skip closes any open occurrence."""
    for status in ("pending", "sent", "voice_escalated"):
        assert decide(status, "skip").to_status == "skipped"


def test_failed_delivery_escalates_immediately():
    """An undelivered step counts as no answer."""
    assert decide("pending", "send_message", delivered=False).follow_up_delay == timedelta(0)
    assert follow_up_delay("caregiver_escalation", delivered=False) == timedelta(0)


def test_custom_delays():
    """Delays come from the configured EscalationDelays."""
    delays = EscalationDelays.from_minutes(5, 20)
    assert decide("pending", "send_message", delays=delays).follow_up_delay == timedelta(minutes=5)
    assert decide("sent", "voice_escalation", delays=delays).follow_up_delay == timedelta(minutes=20)


def test_allowed_from():
    """The guard sets used for compare-and-set claims."""
    assert allowed_from("send_message") == {"pending"}
    assert allowed_from("caregiver_escalation") == {"sent", "voice_escalated"}
    assert allowed_from("skip") == {"pending", "sent", "voice_escalated"}
