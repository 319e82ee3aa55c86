"""Tests for command/intent routing and the pending confirmation."""

from unittest.mock import AsyncMock, patch

import pytest

from qvoice_gateway.dispatch import Classification
from qvoice_gateway.errors import ServiceUnavailable, StoreError
from qvoice_gateway.intent_parser import ActionKind, parse_intent
from qvoice_gateway.router import (
    ARCHIVE_CANCELED_REPLY,
    FOLLOWUP_REPROMPT,
    GENERIC_FAILURE,
    SERVICE_UNAVAILABLE_REPLY,
    STORE_ERROR_REPLY,
    RouteStatus,
)
from qvoice_orchestrator.reminders import REMINDER_PREFIX

from conftest import BOT_ID, USER_ID


class TestClassification:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Hello.", Classification.TOKEN),
            ("  how are you?  ", Classification.TOKEN),
            ("/ask", Classification.TOKEN),
            ("/ask what is entropy", Classification.COMMAND),
            ("/HELP", Classification.COMMAND),
            ("/unknown archive weather", Classification.CHAT),
            ("show me my archive", Classification.INTENT),
            ("what's the weather in Paris?", Classification.INTENT),
            ("tell me a joke", Classification.CHAT),
        ],
    )
    def test_rule_precedence(self, router, text, expected):
        assert router.classify(text) is expected

    @pytest.mark.asyncio
    async def test_pending_confirmation_wins_over_everything(self, router):
        await router.route("/archive", USER_ID)
        assert router.classify("Hello.") is Classification.FOLLOWUP
        assert router.classify("/help") is Classification.FOLLOWUP


class TestIntentParser:
    @pytest.mark.parametrize(
        "text,action,argument",
        [
            ("please save the archive", ActionKind.ARCHIVE_SAVE, ""),
            ("back up my archive", ActionKind.ARCHIVE_SAVE, ""),
            ("open the archive", ActionKind.ARCHIVE_ACCESS, ""),
            ("what's the weather in Paris?", ActionKind.WEATHER_LOOKUP, "Paris"),
            ("weather for New York!", ActionKind.WEATHER_LOOKUP, "New York"),
            ("how is the weather", ActionKind.WEATHER_LOOKUP, ""),
            ("good night", ActionKind.CHAT, "good night"),
        ],
    )
    def test_parse_intent(self, text, action, argument):
        result = parse_intent(text)
        assert result.action is action
        assert result.argument == argument


class TestRouting:
    @pytest.mark.asyncio
    async def test_empty_input_is_ignored(self, router, store):
        result = await router.route("   ", USER_ID)
        assert result.status is RouteStatus.EMPTY
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_not_ready_rejects_without_storing(self, router, store):
        router.is_ready = lambda: False
        result = await router.route("/help", USER_ID)
        assert result.status is RouteStatus.NOT_READY
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_token_phrase_stored_as_index(self, router, store):
        result = await router.route("Hello.", USER_ID)

        assert result.status is RouteStatus.TOKENIZED
        assert result.token_index == 0
        assert result.reply is None
        [utterance] = store.query()
        assert utterance.token_index == 0
        assert utterance.text is None

    @pytest.mark.asyncio
    async def test_command_stores_user_and_bot_utterances(self, router, store):
        result = await router.route("/help", USER_ID)

        assert result.status is RouteStatus.HANDLED
        assert result.classification is Classification.COMMAND
        assert result.reply.startswith("Available commands:")
        assert [(u.user_id, u.text) for u in store.query()] == [(USER_ID, "/help"), (BOT_ID, result.reply)]

    @pytest.mark.asyncio
    async def test_ask_uses_agent(self, router):
        result = await router.route("/ask what is entropy", USER_ID)
        assert result.reply == (
            'Agent Q: Processing your query: "what is entropy" with QNN-enhanced search. '
            "My intuitive layer is now scanning for real-time data."
        )

    @pytest.mark.asyncio
    async def test_bare_ask_is_a_dictionary_phrase(self, router):
        result = await router.route("/ASK   ", USER_ID)
        assert result.status is RouteStatus.TOKENIZED
        assert result.token_index == 10

    @pytest.mark.asyncio
    async def test_tokenlist_lists_dictionary(self, router):
        result = await router.route("/tokenlist", USER_ID)
        assert result.reply.startswith("🔢 Token dictionary:")
        assert "10: /ask" in result.reply

    @pytest.mark.asyncio
    async def test_admin_reports_counts(self, router):
        result = await router.route("/admin", USER_ID)
        assert result.reply.startswith("🛠 Session diagnostics:")
        assert f"User: {USER_ID}" in result.reply
        assert "Agent API: offline (simulated)" in result.reply

    @pytest.mark.asyncio
    async def test_unregistered_slash_command_is_chat(self, router):
        result = await router.route("/dance now", USER_ID)
        assert result.classification is Classification.CHAT
        assert result.reply.startswith("Agent Q: Your message has been processed")

    @pytest.mark.asyncio
    async def test_weather_intent_uses_location(self, router):
        result = await router.route("what's the weather in Paris?", USER_ID)
        assert result.classification is Classification.INTENT
        assert "Paris" in result.reply

    @pytest.mark.asyncio
    async def test_weather_intent_without_location_uses_default(self, router):
        result = await router.route("how is the weather", USER_ID)
        assert "St. Louis,US" in result.reply

    @pytest.mark.asyncio
    async def test_archive_access_without_archives(self, router):
        result = await router.route("show my archive", USER_ID)
        assert result.reply.startswith("📂")
        assert "No archived conversations yet" in result.reply


class TestArchiveConfirmation:
    @pytest.mark.asyncio
    async def test_archive_yes_saves_conversation(self, router, store):
        prompt = await router.route("/archive", USER_ID)
        assert "Reply yes or no" in prompt.reply
        assert router.pending.action is ActionKind.ARCHIVE_CONFIRM

        result = await router.route("Yes.", USER_ID)

        assert result.classification is Classification.FOLLOWUP
        assert result.reply.startswith("💾 Conversation archived: 3 messages")
        assert router.pending is None
        [archive] = store.list_archives(USER_ID)
        assert [u["text"] for u in archive.utterances()] == ["/archive", prompt.reply, "Yes."]

    @pytest.mark.asyncio
    async def test_archive_no_cancels(self, router, store):
        await router.route("/archive", USER_ID)
        result = await router.route("no", USER_ID)

        assert result.reply == ARCHIVE_CANCELED_REPLY
        assert router.pending is None
        assert store.list_archives() == []

    @pytest.mark.asyncio
    async def test_unrecognized_answer_clears_pending(self, router, store):
        await router.route("/archive", USER_ID)
        result = await router.route("maybe later", USER_ID)

        assert result.reply == FOLLOWUP_REPROMPT
        assert router.pending is None
        assert (await router.route("yes", USER_ID)).classification is Classification.CHAT
        assert store.list_archives() == []

    @pytest.mark.asyncio
    async def test_save_intent_requires_confirmation(self, router, store):
        result = await router.route("save this to the archive", USER_ID)
        assert "Reply yes or no" in result.reply
        assert router.pending is not None
        assert store.list_archives() == []

        await router.route("y", USER_ID)
        assert len(store.list_archives()) == 1

    @pytest.mark.asyncio
    async def test_archive_listing_after_save(self, router):
        await router.route("/archive", USER_ID)
        await router.route("yes", USER_ID)

        result = await router.route("open the archive", USER_ID)
        assert result.reply.startswith("📂 Archived conversations (1):")

    @pytest.mark.asyncio
    async def test_reset_drops_pending(self, router):
        await router.route("/archive", USER_ID)
        router.reset()
        assert router.pending is None


class TestReminders:
    @pytest.mark.asyncio
    async def test_remindme_schedules_and_delivers(self, router, store, scheduler, clock):
        result = await router.route('/remindme 1m "call Sam"', USER_ID)

        assert result.reply.startswith("✅ Reminder set for ")
        assert '"call Sam"' in result.reply
        assert store.count_reminders() == 1

        clock["now"] += 60_000
        assert scheduler.run_once() == 1
        last = store.query()[-1]
        assert last.user_id == BOT_ID
        assert last.text == f"{REMINDER_PREFIX}call Sam"

    @pytest.mark.asyncio
    async def test_remindme_bad_format_shows_usage(self, router, store):
        result = await router.route("/remindme tomorrow", USER_ID)
        assert result.status is RouteStatus.HANDLED
        assert "Usage: /remindme" in result.reply
        assert store.count_reminders() == 0


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_unexpected_handler_error_becomes_generic_reply(self, router, store):
        with patch.object(router.agent, "chat", AsyncMock(side_effect=RuntimeError("boom"))):
            result = await router.route("tell me a joke", USER_ID)

        assert result.status is RouteStatus.HANDLED
        assert result.reply == GENERIC_FAILURE
        assert store.query()[-1].text == GENERIC_FAILURE

    @pytest.mark.asyncio
    async def test_service_unavailable_reply(self, router):
        with patch.object(router.agent, "ask", AsyncMock(side_effect=ServiceUnavailable("down"))):
            result = await router.route("/ask anything", USER_ID)
        assert result.reply == SERVICE_UNAVAILABLE_REPLY

    @pytest.mark.asyncio
    async def test_store_failure_still_replies(self, router):
        with patch.object(router.store, "append", side_effect=StoreError("disk full")):
            result = await router.route("/help", USER_ID)
        assert result.status is RouteStatus.HANDLED
        assert result.stored is False
        assert result.reply.startswith("Available commands:")

    @pytest.mark.asyncio
    async def test_token_store_failure(self, router):
        with patch.object(router.store, "append", side_effect=StoreError("disk full")):
            result = await router.route("Hello.", USER_ID)
        assert result.status is RouteStatus.TOKENIZED
        assert result.stored is False
        assert result.reply == STORE_ERROR_REPLY


class TestSpeech:
    @pytest.mark.asyncio
    async def test_offline_speech_returns_error(self, router):
        result = await router.speak("hello")
        assert result.clip is None
        assert result.error == SERVICE_UNAVAILABLE_REPLY

    @pytest.mark.asyncio
    async def test_empty_speech_text(self, router):
        result = await router.speak("  ")
        assert result.error == "Nothing to speak."


class TestChatHistory:
    @pytest.mark.asyncio
    async def test_history_excludes_current_message(self, router):
        await router.route("tell me a joke", USER_ID)

        with patch.object(router.agent, "chat", AsyncMock(return_value="Agent Q: ok")) as chat:
            await router.route("another one", USER_ID)

        message, history = chat.await_args.args
        assert message == "another one"
        assert [turn["sender"] for turn in history] == ["user", "Agent Q"]
        assert history[0]["text"] == "tell me a joke"

    @pytest.mark.asyncio
    async def test_history_keeps_previous_turn_when_message_not_stored(self, router, store):
        await router.route("tell me a joke", USER_ID)
        previous_reply = store.query()[-1].text
        original_append = store.append
        calls = []

        def fail_first_append(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise StoreError("disk full")
            return original_append(*args, **kwargs)

        with patch.object(store, "append", side_effect=fail_first_append), patch.object(
            router.agent, "chat", AsyncMock(return_value="Agent Q: ok")
        ) as chat:
            result = await router.route("another one", USER_ID)

        assert result.stored is False
        history = chat.await_args.args[1]
        assert [turn["text"] for turn in history] == ["tell me a joke", previous_reply]
