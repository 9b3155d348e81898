"""Tests for patient reply handling."""

import pytest

from dosewatch.engine.errors import NotFoundError
from dosewatch.engine.replies import (
    apply_reply,
    handle_voice_digits,
    parse_message_reply,
    parse_voice_digits,
)


def test_parse_message_reply():
    assert parse_message_reply("1") == "confirm"
    assert parse_message_reply(" 2 ") == "snooze"
    assert parse_message_reply("3") == "skip"
    assert parse_message_reply("yes") is None
    assert parse_message_reply("4") is None


def test_parse_voice_digits():
    """On the call, 2 means not taken and 3 means call again later."""
    assert parse_voice_digits("1") == "confirm"
    assert parse_voice_digits("2") == "skip"
    assert parse_voice_digits("3") == "snooze"
    assert parse_voice_digits("9") is None
    assert parse_voice_digits("") is None


@pytest.mark.asyncio
async def test_voice_not_taken_skips(repo, engine, sent_occurrence):
    assert await handle_voice_digits(engine, sent_occurrence.id, "2") == "skip"

    occurrence = await repo.get_occurrence(sent_occurrence.id)
    assert occurrence.status == "skipped"
    assert occurrence.skipped_reason == "declined via voice"


@pytest.mark.asyncio
async def test_voice_call_again_snoozes(clock, queue, engine, sent_occurrence):
    assert await handle_voice_digits(engine, sent_occurrence.id, "3") == "snooze"
    assert any(task_id.startswith("snooze-") for task_id, _, _ in queue.pending())


@pytest.mark.asyncio
async def test_voice_unknown_digit_changes_nothing(repo, engine, sent_occurrence):
    assert await handle_voice_digits(engine, sent_occurrence.id, "7") is None
    assert (await repo.get_occurrence(sent_occurrence.id)).status == "sent"


@pytest.mark.asyncio
async def test_voice_digits_for_missing_occurrence(engine):
    with pytest.raises(NotFoundError):
        await handle_voice_digits(engine, 9999, "1")


@pytest.mark.asyncio
async def test_message_reply_confirms(repo, engine, sent_occurrence):
    result = await apply_reply(engine, sent_occurrence, "confirm", "message")
    assert result.status == "confirmed"
    assert result.confirmation_source == "message"


@pytest.mark.asyncio
async def test_message_snooze_returns_occurrence_unchanged(engine, sent_occurrence):
    result = await apply_reply(engine, sent_occurrence, "snooze", "message", snooze_minutes=5)
    assert result.status == "sent"
    assert result.id == sent_occurrence.id
