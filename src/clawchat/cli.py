import argparse
import asyncio
import json
import logging
import sys
import webbrowser
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from common.events import (
    AssistantDeltaEvent,
    AssistantMessageEvent,
    ErrorEvent,
    Event,
    JobResumedEvent,
    JobSubmittedEvent,
)
from clawchat import __version__
from clawchat.client import GatewayClient, GatewayError
from clawchat.config import ClawchatConfig, ConfigError
from clawchat.models import Conversation
from clawchat.poller import PollState
from clawchat.prompts import (
    ASSISTANT_NAME,
    TEXT_ACTIONS,
    build_action_prompt,
    build_clipboard_prompt,
    get_text_action,
    truncate,
)
from clawchat.service import (
    ChatService,
    ConversationNotFound,
    JobAlreadyPending,
    format_transcript,
)
from clawchat.status import check_gateway_status, render_status_markdown

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        payload = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(verbose: bool = False, quiet: bool = False, log_format: str = "text") -> None:
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_format == "json":
        handlers[0].setFormatter(JsonFormatter())
        logging.basicConfig(level=level, handlers=handlers)
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class ConsolePrinter:
    """Renders service events on stdout."""

    def __init__(self):
        self.streaming = False

    def __call__(self, event: Event) -> None:
        if isinstance(event, AssistantDeltaEvent):
            if not self.streaming:
                print(f"\n{ASSISTANT_NAME}: ", end="", flush=True)
                self.streaming = True
            print(event.text, end="", flush=True)
        elif isinstance(event, AssistantMessageEvent):
            if event.mode == "async":
                print(f"\n{ASSISTANT_NAME}: {event.content}")
            elif self.streaming:
                print()
            self.streaming = False
        elif isinstance(event, JobSubmittedEvent):
            print(f"⏳ Submitted run {event.run_id}, waiting for reply...")
        elif isinstance(event, JobResumedEvent):
            print(f"⏳ Resuming run {event.run_id}...")
        elif isinstance(event, ErrorEvent):
            if self.streaming:
                print()
                self.streaming = False
            print(f"❌ Error: {event.message}")


def _load_config(args: argparse.Namespace) -> ClawchatConfig:
    config = ClawchatConfig.from_env()
    if getattr(args, "no_async", False):
        config.gateway.async_enabled = False
    config.validate()
    return config


def _read_input(path: str | None) -> str:
    if path:
        return Path(path).read_text(encoding="utf-8")
    if sys.stdin.isatty():
        print("Reading from stdin, finish with Ctrl+D:", file=sys.stderr)
    return sys.stdin.read()


def _print_conversation(conversation: Conversation) -> None:
    print(f"# {conversation.display_title} ({conversation.id})")
    for message in conversation.messages:
        who = "You" if message.role == "user" else ASSISTANT_NAME
        ts = message.timestamp.astimezone().strftime("%H:%M")
        print(f"\n[{ts}] {who}: {message.content}")
    if conversation.awaiting_reply:
        print("\n(no reply yet)")


async def _one_shot(args: argparse.Namespace, prompt: str) -> str:
    service = ChatService.from_config(_load_config(args))
    try:
        if args.no_stream:
            return await service.ask(prompt)
        answer = await service.ask(prompt, lambda delta: print(delta, end="", flush=True))
        print()
        return answer
    finally:
        await service.aclose()


def cmd_ask(args: argparse.Namespace) -> int:
    question = " ".join(args.question).strip()
    if not question:
        print("Error: Question is empty")
        return 1
    try:
        answer = asyncio.run(_one_shot(args, question))
    except (ConfigError, GatewayError) as e:
        print(f"Error: {e}")
        return 1
    if args.no_stream:
        print(answer)
    return 0


def cmd_clipboard(args: argparse.Namespace) -> int:
    content = _read_input(args.file)
    try:
        prompt = build_clipboard_prompt(args.prompt, content)
        answer = asyncio.run(_one_shot(args, prompt))
    except (ValueError, ConfigError, GatewayError) as e:
        print(f"Error: {e}")
        return 1
    if args.no_stream:
        print(answer)
    return 0


def cmd_transform(args: argparse.Namespace) -> int:
    if args.list_actions or not args.action:
        for action in TEXT_ACTIONS:
            print(f"  {action.id:<14} {action.title}")
        return 0
    try:
        action = get_text_action(args.action)
    except KeyError as e:
        print(f"Error: {e.args[0]}")
        return 1

    text = _read_input(args.file)
    try:
        prompt = build_action_prompt(action, text)
        answer = asyncio.run(_one_shot(args, prompt))
    except (ValueError, ConfigError, GatewayError) as e:
        print(f"Error: {e}")
        return 1
    if args.no_stream:
        print(answer)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    async def run() -> bool:
        config = _load_config(args)
        async with GatewayClient(config.gateway) as client:
            status = await check_gateway_status(client)
        print(render_status_markdown(status))
        return status.healthy

    try:
        healthy = asyncio.run(run())
    except ConfigError as e:
        print(f"Error: {e}")
        return 1
    return 0 if healthy else 1


def cmd_open_webchat(args: argparse.Namespace) -> int:
    url = _load_config(args).gateway.webchat_url
    print(f"Opening {url}")
    if not webbrowser.open(url):
        print("Error: No browser available")
        return 1
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    config = _load_config(args)
    service = ChatService.from_config(config)
    conversations = service.list_conversations()
    if not conversations:
        print("No conversations yet. Start one with: clawchat chat")
        return 0

    for conv in conversations:
        updated = conv.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
        pending = " ⏳" if service.pending_job(conv.id) else ""
        print(f"{conv.id}  {updated}  {len(conv.messages):>3} msgs  {truncate(conv.display_title, 60)}{pending}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    config = _load_config(args)
    service = ChatService.from_config(config)
    try:
        conversation = service.get_conversation(args.conversation_id)
    except ConversationNotFound as e:
        print(f"Error: {e}")
        return 1
    if args.transcript:
        print(format_transcript(conversation))
    else:
        _print_conversation(conversation)
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    async def run() -> bool:
        service = ChatService.from_config(_load_config(args))
        try:
            return await service.delete_conversation(args.conversation_id)
        finally:
            await service.aclose()

    if not asyncio.run(run()):
        print(f"Conversation {args.conversation_id} not found.")
        return 1
    print("Conversation deleted")
    return 0


def cmd_resume(args: argparse.Namespace) -> int:
    """Wait for every run left pending by earlier sessions."""

    async def run() -> int:
        service = ChatService.from_config(_load_config(args), on_event=ConsolePrinter())
        try:
            pending = service.pending.all()
            if not pending:
                print("No pending runs.")
                return 0
            resumed: list[str] = []
            for conversation_id in pending:
                try:
                    service.open_conversation(conversation_id)
                except ConversationNotFound:
                    logger.warning(f"Dropping pending run for missing conversation {conversation_id}")
                    service.pending.clear(conversation_id)
                    continue
                resumed.append(conversation_id)

            failures = 0
            for conversation_id in resumed:
                state, _ = await service.wait_for_reply(conversation_id)
                if state is not PollState.COMPLETE:
                    failures += 1
            return 1 if failures else 0
        finally:
            await service.aclose()

    return asyncio.run(run())


CHAT_HELP = """Commands:
  /new            Start a new conversation
  /list           List conversations
  /open <id>      Switch to a conversation
  /delete         Delete the current conversation
  /show           Print the current conversation
  /transcript     Print the conversation as plain text
  /help           Show this help
  /quit           Exit"""


class ChatREPL:
    def __init__(self, service: ChatService):
        self.service = service
        self.conversation = service.new_conversation()

    def open(self, conversation_id: str) -> None:
        self.conversation = self.service.open_conversation(conversation_id)
        _print_conversation(self.conversation)

    async def run(self, initial_message: str | None = None) -> None:
        print(f"🤖 clawchat {__version__} (agent: {self.service.client.config.agent_id})")
        print("Commands: /help for all commands")

        if self.service.poller.is_polling(self.conversation.id):
            await self._wait_for_reply()

        if initial_message:
            await self.send(initial_message)

        while True:
            try:
                user_input = (await asyncio.to_thread(input, "\n> ")).strip()
            except EOFError:
                break
            if not user_input:
                continue
            if user_input.startswith("/"):
                if not await self.handle_command(user_input):
                    break
                continue
            await self.send(user_input)

    async def send(self, text: str) -> None:
        try:
            result = await self.service.send(self.conversation, text)
        except JobAlreadyPending as e:
            print(f"⚠️  {e}")
            return
        except GatewayError:
            # Already reported through the event printer; the user turn stays saved.
            self.conversation = self.service.get_conversation(self.conversation.id)
            return
        self.conversation = result.conversation
        if result.mode == "async":
            await self._wait_for_reply()

    async def _wait_for_reply(self) -> None:
        state, self.conversation = await self.service.wait_for_reply(self.conversation.id)
        logger.debug(f"Run finished with state {state}")

    async def handle_command(self, line: str) -> bool:
        name, _, arg = line[1:].partition(" ")
        arg = arg.strip()
        if name in ("quit", "exit", "q"):
            return False
        if name == "help":
            print(CHAT_HELP)
        elif name == "new":
            self.conversation = self.service.new_conversation()
            print("Started a new conversation")
        elif name == "list":
            for conv in self.service.list_conversations():
                print(f"  {conv.id}  {conv.display_title}")
        elif name == "open":
            if not arg:
                print("Usage: /open <conversation id>")
                return True
            try:
                self.open(arg)
            except ConversationNotFound as e:
                print(f"❌ {e}")
                return True
            if self.service.poller.is_polling(self.conversation.id):
                await self._wait_for_reply()
        elif name == "delete":
            if not await self.service.delete_conversation(self.conversation.id):
                print("Nothing to delete: this conversation has not been saved yet")
                return True
            self.conversation = self.service.new_conversation()
            print("Conversation deleted")
        elif name == "show":
            _print_conversation(self.conversation)
        elif name == "transcript":
            print(format_transcript(self.conversation))
        else:
            print(f"Unknown command: /{name}. Type /help for available commands.")
        return True


def cmd_chat(args: argparse.Namespace) -> int:
    async def run() -> int:
        printer = ConsolePrinter()
        service = ChatService.from_config(_load_config(args), on_event=printer)
        repl = ChatREPL(service)
        try:
            if args.conversation_id:
                repl.open(args.conversation_id)
            await repl.run(args.message)
        except ConversationNotFound as e:
            print(f"Error: {e}")
            return 1
        finally:
            await service.aclose()
        return 0

    return asyncio.run(run())


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--no-stream", action="store_true", help="Wait for the full answer")
    parser.add_argument("--file", "-f", help="Read input from a file instead of stdin")


def main(argv: list[str] | None = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="clawchat",
        description="clawchat - Chat with a Clawdbot gateway",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only log errors"
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log format (default: text)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ask_parser = subparsers.add_parser("ask", help="Ask a one-off question")
    ask_parser.add_argument("question", nargs="+", help="Question to ask")
    ask_parser.add_argument("--no-stream", action="store_true", help="Wait for the full answer")
    ask_parser.set_defaults(func=cmd_ask)

    chat_parser = subparsers.add_parser("chat", help="Interactive conversation")
    chat_parser.add_argument("conversation_id", nargs="?", help="Continue a saved conversation")
    chat_parser.add_argument("--message", "-m", help="Send this message first")
    chat_parser.add_argument(
        "--no-async", action="store_true", help="Always stream instead of submitting runs"
    )
    chat_parser.set_defaults(func=cmd_chat)

    clipboard_parser = subparsers.add_parser(
        "clipboard", help="Ask about piped content (e.g. pbpaste | clawchat clipboard)"
    )
    clipboard_parser.add_argument("--prompt", "-p", help="What to ask (default: What is this?)")
    _add_common_options(clipboard_parser)
    clipboard_parser.set_defaults(func=cmd_clipboard)

    transform_parser = subparsers.add_parser(
        "transform", help="Apply a text action (explain, summarize, ...) to piped text"
    )
    transform_parser.add_argument("action", nargs="?", help="Action id")
    transform_parser.add_argument(
        "--list-actions", action="store_true", help="List available actions"
    )
    _add_common_options(transform_parser)
    transform_parser.set_defaults(func=cmd_transform)

    status_parser = subparsers.add_parser("status", help="Check gateway health")
    status_parser.set_defaults(func=cmd_status)

    webchat_parser = subparsers.add_parser("open-webchat", help="Open the gateway web chat")
    webchat_parser.set_defaults(func=cmd_open_webchat)

    list_parser = subparsers.add_parser("list", help="List saved conversations")
    list_parser.set_defaults(func=cmd_list)

    show_parser = subparsers.add_parser("show", help="Show a conversation")
    show_parser.add_argument("conversation_id", help="Conversation ID")
    show_parser.add_argument(
        "--transcript", action="store_true", help="Plain 'You: ...' transcript"
    )
    show_parser.set_defaults(func=cmd_show)

    delete_parser = subparsers.add_parser("delete", help="Delete a conversation")
    delete_parser.add_argument("conversation_id", help="Conversation ID")
    delete_parser.set_defaults(func=cmd_delete)

    resume_parser = subparsers.add_parser("resume", help="Collect replies for pending runs")
    resume_parser.set_defaults(func=cmd_resume)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose, args.quiet, args.log_format)
    try:
        return args.func(args)
    except ConfigError as e:
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted. Pending runs are kept; collect them with: clawchat resume")
        return 130


if __name__ == "__main__":
    sys.exit(main())
