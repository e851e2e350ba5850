import asyncio

from shared.helper.constants import (
    DEFAULT_PROGRESS_COMPLETE_DELAY,
    EVENT_INDEXING_PAUSED,
    EVENT_INDEXING_RESUMED,
    EVENT_PROGRESS_CHANGED,
    EVENT_PROGRESS_CLEARED,
    EVENT_PROGRESS_COMPLETE,
)
from shared.helper.EventBus import EventBus
from shared.helper.HelperConfig import HelperConfig
from shared.models.progress import FileProgress, IndexingProgress, IndexingStage


class ProgressTracker:
    """
    Tracks the in-flight ingestion batch of every topic and coordinates the
    global indexing pause.

    At most one live record exists per topic. A completed record stays visible
    for PROGRESS_COMPLETE_DELAY seconds so observers can render the finished
    state, then it is dropped. Every mutation is published on the event bus.
    """

    def __init__(self, helper_config: HelperConfig, event_bus: EventBus):
        self.logging = helper_config.get_logger()
        self.event_bus = event_bus
        self.complete_delay = float(helper_config.get_number_val("PROGRESS_COMPLETE_DELAY", default=DEFAULT_PROGRESS_COMPLETE_DELAY))

        self._progress: dict[str, IndexingProgress] = {}
        self._removal_tasks: dict[str, asyncio.Task] = {}
        self._paused = False
        self._waiters: dict[str, list[asyncio.Future]] = {}

    ##########################################
    ############### TRACKING #################
    ##########################################

    async def start_tracking(self, topic_id: str, topic_name: str, total_files: int) -> IndexingProgress:
        """Open a fresh progress record for a topic, replacing any finished one.

        Args:
            topic_id (str): The topic being indexed.
            topic_name (str): Display name of the topic.
            total_files (int): Number of files in the batch.

        Returns:
            IndexingProgress: The new record.
        """
        self._cancel_removal(topic_id)
        self.logging.info("Starting progress tracking for topic '%s' (%d files)", topic_name, total_files)
        progress = IndexingProgress(topic_id=topic_id, topic_name=topic_name, total_files=total_files)
        self._progress[topic_id] = progress
        await self._publish_changed(progress)
        return progress

    async def update_progress(
        self,
        topic_id: str,
        processed_files: int | None = None,
        current_file: str | None = None,
        stage: IndexingStage | None = None,
    ) -> None:
        """Update the batch-level counters of a live record.

        The percentage is derived from processed_files / total_files.

        Args:
            topic_id (str): The topic being indexed.
            processed_files (int | None): New processed counter.
            current_file (str | None): File currently in the pipeline.
            stage (IndexingStage | None): Current stage of the batch.
        """
        progress = self._progress.get(topic_id)
        if progress is None:
            self.logging.warning("Attempted to update non-existent progress tracking for topic %s", topic_id)
            return
        if processed_files is not None:
            progress.processed_files = processed_files
            if progress.total_files > 0:
                progress.percentage = round(progress.processed_files / progress.total_files * 100)
        if current_file is not None:
            progress.current_file = current_file
        if stage is not None:
            progress.stage = stage
        self.logging.debug(
            "Progress of topic %s: %d/%d (%d%%)",
            topic_id,
            progress.processed_files,
            progress.total_files,
            progress.percentage,
        )
        await self._publish_changed(progress)

    async def update_file_progress(self, topic_id: str, file_path: str, stage: IndexingStage, chunk_count: int | None = None) -> None:
        """Record the stage of one file of the batch. A completed file leaves activeFiles."""
        progress = self._progress.get(topic_id)
        if progress is None:
            return
        if stage == "complete":
            progress.active_files.pop(file_path, None)
        else:
            progress.active_files[file_path] = FileProgress(stage=stage, chunk_count=chunk_count)
            progress.current_file = file_path
            progress.stage = stage
        await self._publish_changed(progress)

    async def complete_tracking(self, topic_id: str) -> None:
        """Mark the batch as finished and schedule removal of the record.

        Args:
            topic_id (str): The topic whose batch finished.
        """
        progress = self._progress.get(topic_id)
        if progress is None:
            return
        progress.stage = "complete"
        progress.percentage = 100
        progress.processed_files = progress.total_files
        progress.current_file = None
        progress.active_files.clear()
        self.logging.info("Progress tracking complete for topic '%s'", progress.topic_name)
        await self._publish_changed(progress)

        self._cancel_removal(topic_id)
        self._removal_tasks[topic_id] = asyncio.create_task(self._remove_after_delay(topic_id, progress))

    async def cancel_tracking(self, topic_id: str) -> None:
        self._cancel_removal(topic_id)
        if self._progress.pop(topic_id, None) is not None:
            self.logging.info("Progress tracking cancelled for topic %s", topic_id)
        await self.event_bus.broadcast(EVENT_PROGRESS_COMPLETE, {"topicId": topic_id})

    async def clear_all(self) -> None:
        for topic_id in list(self._removal_tasks):
            self._cancel_removal(topic_id)
        self._progress.clear()
        await self.event_bus.broadcast(EVENT_PROGRESS_CLEARED, {})

    async def _remove_after_delay(self, topic_id: str, progress: IndexingProgress) -> None:
        await asyncio.sleep(self.complete_delay)
        # a newer batch may have replaced the record meanwhile
        if self._progress.get(topic_id) is progress:
            del self._progress[topic_id]
            await self.event_bus.broadcast(EVENT_PROGRESS_COMPLETE, {"topicId": topic_id})
        self._removal_tasks.pop(topic_id, None)

    def _cancel_removal(self, topic_id: str) -> None:
        task = self._removal_tasks.pop(topic_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def _publish_changed(self, progress: IndexingProgress) -> None:
        await self.event_bus.broadcast(EVENT_PROGRESS_CHANGED, {"topicId": progress.topic_id, "progress": progress.to_json_dict()})

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_progress(self, topic_id: str) -> IndexingProgress | None:
        return self._progress.get(topic_id)

    def get_all_progress(self) -> list[IndexingProgress]:
        return list(self._progress.values())

    def has_active_indexing(self, topic_id: str | None = None) -> bool:
        """
        Returns True if the topic (or, without topic_id, any topic) has a batch
        that has not reached the complete stage.
        """
        if topic_id is not None:
            progress = self._progress.get(topic_id)
            return progress is not None and progress.stage != "complete"
        return any(p.stage != "complete" for p in self._progress.values())

    ##########################################
    ################# PAUSE ##################
    ##########################################

    def is_paused(self) -> bool:
        return self._paused

    async def pause(self) -> None:
        """
        Pauses indexing for every topic. Files already in the pipeline finish.
        """
        if self._paused:
            return
        self._paused = True
        self.logging.info("Indexing paused")
        await self.event_bus.broadcast(EVENT_INDEXING_PAUSED, {})

    async def resume(self) -> None:
        """
        Lifts the pause and releases every waiting ingestion loop.
        """
        if not self._paused:
            return
        self._paused = False
        waiters, self._waiters = self._waiters, {}
        released = 0
        for futures in waiters.values():
            for future in futures:
                if not future.done():
                    future.set_result(None)
                    released += 1
        self.logging.info("Indexing resumed, released %d waiting batch(es)", released)
        await self.event_bus.broadcast(EVENT_INDEXING_RESUMED, {})

    async def wait_if_paused(self, topic_id: str) -> None:
        """Suspend the caller while indexing is paused.

        Ingestion loops call this before every file.

        Args:
            topic_id (str): The topic whose batch is waiting.
        """
        if not self._paused:
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(topic_id, []).append(future)
        self.logging.debug("Topic %s waiting for indexing to resume", topic_id)
        await future
