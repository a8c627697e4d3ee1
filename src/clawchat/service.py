"""Submit, then stream or poll, then reconcile.

``ChatService`` wires the gateway client, the poller and the two durable
stores together. Presentation code observes it through ``common.events``
callbacks and never touches the stores directly.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from common.events import (
    AssistantDeltaEvent,
    AssistantMessageEvent,
    ErrorEvent,
    EventCallback,
    EventEmitter,
    JobResumedEvent,
    JobSubmittedEvent,
    UserTurnEvent,
)
from clawchat.client import GatewayClient, GatewayError, SubmissionUnavailable
from clawchat.config import ClawchatConfig, PollConfig
from clawchat.models import Conversation, PendingJob
from clawchat.pending import PendingJobStore
from clawchat.poller import JobError, JobPoller, PollState, Sleeper
from clawchat.prompts import ASSISTANT_NAME
from clawchat.reconciler import ConversationReconciler
from clawchat.storage import ConversationStore, LocalStorage, StorageError

logger = logging.getLogger(__name__)


class ConversationNotFound(Exception):
    pass


class JobAlreadyPending(Exception):
    pass


@dataclass(frozen=True)
class SendResult:
    conversation: Conversation
    mode: str
    run_id: str | None = None
    content: str | None = None


class ChatService:
    def __init__(
        self,
        client: GatewayClient,
        conversations: ConversationStore,
        pending: PendingJobStore,
        poller_config: PollConfig | None = None,
        on_event: EventCallback = None,
        async_enabled: bool = True,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.client = client
        self.conversations = conversations
        self.pending = pending
        self.reconciler = ConversationReconciler(conversations)
        self.poller = JobPoller(
            client,
            pending,
            poller_config,
            on_complete=self._on_job_complete,
            on_error=self._on_job_error,
            sleep=sleep,
        )
        self.events = EventEmitter(on_event)
        self.async_enabled = async_enabled

    @classmethod
    def from_config(
        cls, config: ClawchatConfig, on_event: EventCallback = None
    ) -> "ChatService":
        storage = LocalStorage(config.data_dir)
        return cls(
            GatewayClient(config.gateway),
            ConversationStore(storage),
            PendingJobStore(storage),
            poller_config=config.poll,
            on_event=on_event,
            async_enabled=config.gateway.async_enabled,
        )

    async def aclose(self) -> None:
        await self.poller.close()
        await self.client.aclose()

    def list_conversations(self) -> list[Conversation]:
        return self.conversations.list()

    def new_conversation(self) -> Conversation:
        return self.reconciler.new_conversation()

    def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return conversation

    def pending_job(self, conversation_id: str) -> PendingJob | None:
        return self.pending.get(conversation_id)

    def open_conversation(self, conversation_id: str) -> Conversation:
        """Load a conversation and pick up any run left over from an earlier process."""
        conversation = self.get_conversation(conversation_id)
        job = self.pending.get(conversation_id)
        if job is not None and not self.poller.is_polling(conversation_id):
            self.poller.resume(conversation_id)
            self.events.emit(JobResumedEvent(conversation_id, job.run_id))
        return conversation

    async def delete_conversation(self, conversation_id: str) -> bool:
        await self.poller.cancel(conversation_id)
        self.pending.clear(conversation_id)
        return self.conversations.delete(conversation_id)

    async def send(
        self,
        conversation: Conversation,
        text: str,
        on_chunk: Callable[[str], None] | None = None,
    ) -> SendResult:
        text = text.strip()
        if not text:
            raise ValueError("Message is empty")

        if self.poller.is_polling(conversation.id) or self.pending.get(conversation.id):
            raise JobAlreadyPending(
                f"Conversation {conversation.id} is still waiting for a reply"
            )

        # The stored copy may already hold replies reconciled in the background.
        conversation = self.conversations.get(conversation.id) or conversation
        conversation = self.reconciler.append_user_turn(conversation, text)
        self.events.emit(UserTurnEvent(conversation.id, text))

        if self.async_enabled:
            try:
                run_id = await self.client.submit_async(conversation.messages, conversation.id)
            except SubmissionUnavailable as e:
                logger.info(f"Falling back to streaming: {e}")
            else:
                job = PendingJob(
                    run_id=run_id,
                    originating_user_message=conversation.messages[-1],
                )
                self.pending.put(conversation.id, job)
                self.poller.start(conversation.id, job)
                self.events.emit(JobSubmittedEvent(conversation.id, run_id))
                return SendResult(conversation, "async", run_id=run_id)

        def forward(delta: str) -> None:
            if on_chunk is not None:
                on_chunk(delta)
            self.events.emit(AssistantDeltaEvent(conversation.id, delta))

        try:
            content = await self.client.send_synchronous(conversation.messages, forward)
        except GatewayError as e:
            self.events.emit(ErrorEvent(str(e), conversation.id, source="gateway"))
            raise

        conversation = self.reconciler.append_assistant_turn(conversation, content)
        self.events.emit(AssistantMessageEvent(conversation.id, content, mode="stream"))
        return SendResult(conversation, "stream", content=content)

    async def wait_for_reply(self, conversation_id: str) -> tuple[PollState | None, Conversation]:
        """Wait for the conversation's run to end.

        If the reply cannot be saved the pending record is kept, the state stays
        PENDING and the failure is reported as an error event.
        """
        try:
            state = await self.poller.wait(conversation_id)
        except (OSError, StorageError) as e:
            logger.error(f"Could not save reply for {conversation_id}: {e}")
            self.events.emit(
                ErrorEvent(
                    f"Reply could not be saved ({e}). Run `clawchat resume` to retry.",
                    conversation_id,
                    source="poller",
                )
            )
            state = self.poller.states.get(conversation_id)
        return state, self.get_conversation(conversation_id)

    async def ask(
        self, question: str, on_chunk: Callable[[str], None] | None = None
    ) -> str:
        """One-shot question outside any conversation. Nothing is persisted."""
        if not question.strip():
            raise ValueError("Question is empty")
        return await self.client.send_synchronous(
            [{"role": "user", "content": question}], on_chunk
        )

    def _on_job_complete(self, conversation_id: str, job: PendingJob, content: str) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            logger.warning(
                f"Run {job.run_id} finished for deleted conversation {conversation_id}"
            )
            return
        if conversation.last_message != job.originating_user_message:
            logger.info(f"Run {job.run_id} already reconciled into {conversation_id}")
            return

        self.reconciler.append_assistant_turn(conversation, content)
        self.events.emit(AssistantMessageEvent(conversation_id, content, mode="async"))

    def _on_job_error(self, conversation_id: str, job: PendingJob, error: JobError) -> None:
        logger.warning(f"Run {job.run_id} for {conversation_id} ended without a reply: {error}")
        self.events.emit(ErrorEvent(str(error), conversation_id, source="poller"))


def format_transcript(conversation: Conversation) -> str:
    return "\n\n".join(
        f"{'You' if m.role == 'user' else ASSISTANT_NAME}: {m.content}"
        for m in conversation.messages
    )
