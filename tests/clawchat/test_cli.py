import json
import logging

import httpx
import pytest

from common.events import AssistantDeltaEvent, AssistantMessageEvent, ErrorEvent
from clawchat.cli import ChatREPL, ConsolePrinter, JsonFormatter, main
from clawchat.models import Message, PendingJob
from clawchat.pending import PendingJobStore
from clawchat.prompts import TEXT_ACTIONS
from clawchat.reconciler import ConversationReconciler
from clawchat.storage import ConversationStore, LocalStorage


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "clawchat"
    monkeypatch.setenv("CLAWCHAT_TOKEN", "test-token")
    monkeypatch.setenv("CLAWCHAT_DATA_DIR", str(path))
    monkeypatch.setenv("CLAWCHAT_ENDPOINT", "http://gateway.test")
    return path


@pytest.fixture
def saved_conversation(data_dir):
    reconciler = ConversationReconciler(ConversationStore(LocalStorage(data_dir)))
    conversation = reconciler.append_user_turn(reconciler.new_conversation(), "hi there")
    return reconciler.append_assistant_turn(conversation, "hello")


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "clawchat" in capsys.readouterr().out

    def test_list_actions(self, capsys):
        assert main(["transform", "--list-actions"]) == 0
        out = capsys.readouterr().out
        for action in TEXT_ACTIONS:
            assert action.id in out

    def test_unknown_action(self, capsys):
        assert main(["transform", "haiku"]) == 1
        assert "Unknown action 'haiku'" in capsys.readouterr().out

    def test_missing_token(self, data_dir, monkeypatch, capsys):
        monkeypatch.setenv("CLAWCHAT_TOKEN", "")
        assert main(["list"]) == 1
        assert "CLAWCHAT_TOKEN" in capsys.readouterr().out

    def test_list_empty(self, data_dir, capsys):
        assert main(["list"]) == 0
        assert "No conversations yet" in capsys.readouterr().out

    def test_list_marks_pending(self, data_dir, saved_conversation, capsys):
        job = PendingJob(run_id="run-1", originating_user_message=Message(role="user", content="x"))
        PendingJobStore(LocalStorage(data_dir)).put(saved_conversation.id, job)

        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert saved_conversation.id in out
        assert "hi there" in out
        assert "⏳" in out

    def test_show_transcript(self, saved_conversation, capsys):
        assert main(["show", saved_conversation.id, "--transcript"]) == 0
        assert capsys.readouterr().out.strip() == "You: hi there\n\nClawdbot: hello"

    def test_show_missing(self, data_dir, capsys):
        assert main(["show", "nope"]) == 1
        assert "not found" in capsys.readouterr().out

    def test_delete(self, saved_conversation, capsys):
        assert main(["delete", saved_conversation.id]) == 0
        assert main(["delete", saved_conversation.id]) == 1

    def test_resume_with_nothing_pending(self, data_dir, capsys):
        assert main(["resume"]) == 0
        assert "No pending runs" in capsys.readouterr().out

    def test_open_webchat_uses_gateway_url(self, data_dir, monkeypatch, capsys):
        opened = []
        monkeypatch.setenv("CLAWCHAT_ENDPOINT", "http://gateway.test//")
        monkeypatch.setattr("clawchat.cli.webbrowser.open", lambda url: opened.append(url) or True)

        assert main(["open-webchat"]) == 0
        assert opened == ["http://gateway.test"]


class TestChatREPL:
    @pytest.mark.asyncio
    async def test_delete_unsaved_conversation(self, service, capsys):
        repl = ChatREPL(service)

        assert await repl.handle_command("/delete") is True
        assert "Nothing to delete" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_delete_saved_conversation(self, service, gateway, capsys):
        gateway.submit = httpx.Response(404)
        repl = ChatREPL(service)
        await repl.send("hi")
        saved_id = repl.conversation.id

        assert await repl.handle_command("/delete") is True

        assert "Conversation deleted" in capsys.readouterr().out
        assert service.list_conversations() == []
        assert repl.conversation.id != saved_id


class TestConsolePrinter:
    def test_stream_then_final(self, capsys):
        printer = ConsolePrinter()
        printer(AssistantDeltaEvent("c1", "Hel"))
        printer(AssistantDeltaEvent("c1", "lo"))
        printer(AssistantMessageEvent("c1", "Hello", mode="stream"))

        assert capsys.readouterr().out == "\nClawdbot: Hello\n"
        assert printer.streaming is False

    def test_async_reply_printed_whole(self, capsys):
        ConsolePrinter()(AssistantMessageEvent("c1", "42", mode="async"))
        assert capsys.readouterr().out == "\nClawdbot: 42\n"

    def test_error(self, capsys):
        ConsolePrinter()(ErrorEvent("boom", "c1"))
        assert "Error: boom" in capsys.readouterr().out


class TestJsonFormatter:
    def test_formats_record(self):
        record = logging.LogRecord("clawchat.poller", logging.WARNING, __file__, 1, "run %s", ("r1",), None)
        payload = json.loads(JsonFormatter().format(record))

        assert payload["level"] == "WARNING"
        assert payload["logger"] == "clawchat.poller"
        assert payload["message"] == "run r1"
