"""Tests for rebuilding provider messages from the message log."""

from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from support_agent.domain.context.history_reconstructor import HistoryReconstructor, with_location
from support_agent.domain.models.agent_state import Direction, StoredMessage


START = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def incoming(message_id, text, minute, **metadata):
    return StoredMessage(
        id=message_id, context_id="ctx1", direction=Direction.INCOMING,
        content=text, metadata=metadata, created_at=START + timedelta(minutes=minute),
    )


def outgoing(message_id, text, minute, **metadata):
    return StoredMessage(
        id=message_id, context_id="ctx1", direction=Direction.OUTGOING,
        content=text, metadata=metadata, created_at=START + timedelta(minutes=minute),
    )


TWO_CALLS = {
    "tool_calls": [
        {"id": "call_a", "name": "searchCustomer", "args": {"identifier": "alice"}},
        {"id": "call_b", "name": "countCustomerMatches", "args": {"identifier": "bob"}},
    ],
    "tool_results": [
        # Results stored out of order are replayed in call order
        {"tool_call_id": "call_b", "name": "countCustomerMatches", "output": {"matches": 2}},
        {"tool_call_id": "call_a", "name": "searchCustomer", "output": {"message": "Alice"}},
    ],
}


class FailingLog:
    async def append(self, message):
        return message

    async def get_recent(self, context_id, limit):
        raise ConnectionError("log unavailable")


class TestReconstruct:
    """Ordering and tool replay"""

    @pytest.mark.asyncio
    async def test_plain_turns_in_chronological_order(self, message_log):
        await message_log.append(incoming("m1", "hello", 0))
        await message_log.append(outgoing("m2", "hi there", 1))
        await message_log.append(incoming("m3", "thanks", 2))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6)

        assert [type(message) for message in history] == [HumanMessage, AIMessage, HumanMessage]
        assert [message.content for message in history] == ["hello", "hi there", "thanks"]

    @pytest.mark.asyncio
    async def test_tool_results_follow_their_calls(self, message_log):
        await message_log.append(incoming("m1", "look up alice and bob", 0))
        await message_log.append(outgoing("m2", "Found them.", 1, **TWO_CALLS))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6)

        assert [type(message) for message in history] == [
            HumanMessage, AIMessage, ToolMessage, ToolMessage, AIMessage
        ]
        call_message = history[1]
        assert [call["id"] for call in call_message.tool_calls] == ["call_a", "call_b"]
        assert call_message.tool_calls[0]["args"] == {"identifier": "alice"}
        assert [message.tool_call_id for message in history[2:4]] == ["call_a", "call_b"]
        assert history[3].content == '{"matches": 2}'
        assert history[4].content == "Found them."

    @pytest.mark.asyncio
    async def test_limit_keeps_most_recent(self, message_log):
        for minute in range(5):
            await message_log.append(incoming(f"m{minute}", f"turn {minute}", minute))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=2)

        assert [message.content for message in history] == ["turn 3", "turn 4"]

    @pytest.mark.asyncio
    async def test_excluded_ids_are_skipped(self, message_log):
        await message_log.append(incoming("m1", "earlier", 0))
        await message_log.append(incoming("m2", "current", 1))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6, exclude_ids={"m2"})

        assert [message.content for message in history] == ["earlier"]

    @pytest.mark.asyncio
    async def test_non_positive_limit(self, message_log):
        await message_log.append(incoming("m1", "hello", 0))
        assert await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=0) == []

    @pytest.mark.asyncio
    async def test_location_prefix(self, message_log):
        await message_log.append(incoming("m1", "I am here", 0, latitude=41.0, longitude=69.2))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6)

        assert history[0].content == "[Location shared: 41.0, 69.2]\nI am here"


class TestDegradation:
    """Corrupt tool metadata never breaks the turn"""

    @pytest.mark.asyncio
    async def test_result_for_unknown_call_degrades_to_text(self, message_log):
        await message_log.append(outgoing("m1", "Done.", 0, tool_calls=[
            {"id": "call_a", "name": "searchCustomer", "args": {}},
        ], tool_results=[
            {"tool_call_id": "call_zzz", "name": "searchCustomer", "output": {}},
        ]))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6)

        assert len(history) == 1
        assert isinstance(history[0], AIMessage)
        assert history[0].content == "Done."
        assert not history[0].tool_calls

    @pytest.mark.asyncio
    async def test_call_without_result_degrades_to_text(self, message_log):
        await message_log.append(outgoing("m1", "Done.", 0, tool_calls=[
            {"id": "call_a", "name": "searchCustomer", "args": {}},
        ]))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6)

        assert [message.content for message in history] == ["Done."]

    @pytest.mark.asyncio
    async def test_malformed_metadata_degrades_to_text(self, message_log):
        await message_log.append(outgoing("m1", "Answer", 0, tool_calls="not a list"))
        await message_log.append(outgoing("m2", "Second", 1, tool_calls=[{"name": "missing id"}]))

        history = await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6)

        assert [message.content for message in history] == ["Answer", "Second"]

    @pytest.mark.asyncio
    async def test_degraded_empty_message_is_dropped(self, message_log):
        await message_log.append(outgoing("m1", "", 0, tool_calls=[{"id": "x", "name": "t", "args": {}}]))

        assert await HistoryReconstructor(message_log).reconstruct("ctx1", max_turns=6) == []

    @pytest.mark.asyncio
    async def test_unreadable_log_yields_empty_history(self):
        assert await HistoryReconstructor(FailingLog()).reconstruct("ctx1", max_turns=6) == []


class TestWithLocation:
    def test_without_coordinates(self):
        assert with_location("hello", {}) == "hello"

    def test_location_only(self):
        assert with_location("", {"latitude": 1, "longitude": 2}) == "[Location shared: 1, 2]"
