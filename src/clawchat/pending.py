import logging

from pydantic import ValidationError

from clawchat.models import PendingJob
from clawchat.storage import PENDING_JOBS_KEY, LocalStorage

logger = logging.getLogger(__name__)


class PendingJobStore:
    """Durable conversation id -> PendingJob mapping.

    Each write reloads the full map, changes one key and writes the map back.
    The last writer wins, which is fine for a single client process.
    """

    def __init__(self, storage: LocalStorage, key: str = PENDING_JOBS_KEY):
        self.storage = storage
        self.key = key

    def _load(self) -> dict[str, dict]:
        data = self.storage.get_item(self.key)
        return data if isinstance(data, dict) else {}

    def _save(self, jobs: dict[str, dict]) -> None:
        self.storage.set_item(self.key, jobs)

    def all(self) -> dict[str, PendingJob]:
        jobs: dict[str, PendingJob] = {}
        for conversation_id, raw in self._load().items():
            try:
                jobs[conversation_id] = PendingJob.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Ignoring unreadable pending job for {conversation_id}: {e}")
        return jobs

    def get(self, conversation_id: str) -> PendingJob | None:
        raw = self._load().get(conversation_id)
        if raw is None:
            return None
        try:
            return PendingJob.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable pending job for {conversation_id}: {e}")
            return None

    def put(self, conversation_id: str, job: PendingJob) -> None:
        jobs = self._load()
        jobs[conversation_id] = job.model_dump(mode="json")
        self._save(jobs)
        logger.debug(f"Recorded pending run {job.run_id} for {conversation_id}")

    def clear(self, conversation_id: str) -> None:
        jobs = self._load()
        if jobs.pop(conversation_id, None) is None:
            return
        if jobs:
            self._save(jobs)
        else:
            self.storage.remove_item(self.key)
        logger.debug(f"Cleared pending job for {conversation_id}")
