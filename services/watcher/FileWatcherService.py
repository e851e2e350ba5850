"""Folder watching for the default topic.

Uses watchfiles (Rust notify) for OS-level change notifications. Events are
debounced: every event restarts the timer, and only a quiet period lets the
pending set drain into one ingestion batch. One lock is shared by the
drain and the seed scan so two batches never run at once; events that arrive
while a batch runs stay pending and re-arm the timer when it is done.
"""

import asyncio
import os

import watchfiles

from services.topics.TopicManager import TopicManager
from shared.helper.constants import DEFAULT_INCLUDE_EXTENSIONS, DEFAULT_WATCH_DEBOUNCE_SECONDS
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document, normalize_path


class FileWatcherService:
    """Keeps the default topic in sync with the configured watch folders."""

    def __init__(self, helper_config: HelperConfig, topic_manager: TopicManager):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.topic_manager = topic_manager

        self._load_configuration()

        self._stop_event: asyncio.Event | None = None
        self._watch_tasks: list[asyncio.Task] = []
        self._seed_task: asyncio.Task | None = None
        self._debounce_task: asyncio.Task | None = None
        self._pending: set[str] = set()
        self._batch_lock = asyncio.Lock()

        self.topic_manager.set_watch_folders_provider(self.get_configured_watch_folders)

    ##########################################
    ############# CONFIGURATION ##############
    ##########################################

    def _load_configuration(self) -> None:
        self.enabled = self.helper_config.get_bool_val("WATCH_ENABLED", default=True)
        self.recursive = self.helper_config.get_bool_val("WATCH_RECURSIVE", default=True)
        self.debounce_seconds = float(self.helper_config.get_number_val("WATCH_DEBOUNCE_SECONDS", default=DEFAULT_WATCH_DEBOUNCE_SECONDS))
        extensions = self.helper_config.get_list_val("INCLUDE_EXTENSIONS", default=DEFAULT_INCLUDE_EXTENSIONS)
        self.include_extensions = {self._normalize_extension(ext) for ext in extensions if ext.strip()}
        self.workspace_root = self.helper_config.get_string_val("WORKSPACE_ROOT", default="").strip()
        self.raw_watch_folders = self.helper_config.get_list_val("WATCH_FOLDERS", default=[])
        self.watch_folders = self._resolve_watch_folders(self.raw_watch_folders)

    @staticmethod
    def _normalize_extension(extension: str) -> str:
        extension = extension.strip().lower()
        return extension if extension.startswith(".") else f".{extension}"

    def _resolve_watch_folders(self, folders: list[str]) -> list[str]:
        """Resolve configured folders to existing absolute directories.

        Relative folders resolve against WORKSPACE_ROOT (ROOT_DIR if unset).
        With WORKSPACE_ROOT set, absolute folders outside of it are rejected.

        Args:
            folders (list[str]): Raw configured folders.

        Returns:
            list[str]: Normalized, de-duplicated, existing directories.
        """
        base = normalize_path(self.workspace_root or self.helper_config.get_root_dir())
        resolved: list[str] = []
        for folder in folders:
            folder = folder.strip()
            if not folder:
                continue
            if os.path.isabs(os.path.expanduser(folder)):
                path = normalize_path(folder)
                if self.workspace_root and path != base and not path.startswith(base.rstrip(os.sep) + os.sep):
                    self.logging.warning("Rejecting watch folder outside of the workspace root %s: %s", base, path)
                    continue
            else:
                path = normalize_path(os.path.join(base, folder))
            if not os.path.isdir(path):
                self.logging.warning("Watch folder does not exist or is not a directory: %s", path)
                continue
            if path not in resolved:
                resolved.append(path)
        return resolved

    async def update_configuration(self) -> bool:
        """Re-read the watch configuration and restart the watcher if it changed.

        Returns:
            bool: True if the watcher was restarted.
        """
        before = (self.enabled, self.recursive, sorted(self.include_extensions), self.watch_folders)
        self._load_configuration()
        after = (self.enabled, self.recursive, sorted(self.include_extensions), self.watch_folders)
        if before == after:
            self.logging.debug("Watch configuration unchanged")
            return False
        self.logging.info("Watch configuration changed, restarting watcher")
        await self.stop()
        await self.start()
        return True

    ##########################################
    ################ GETTER ##################
    ##########################################

    def is_watching_enabled(self) -> bool:
        return self.enabled and bool(self.watch_folders)

    def is_running(self) -> bool:
        return any(not task.done() for task in self._watch_tasks)

    def get_configured_watch_folders(self) -> list[str]:
        return list(self.watch_folders)

    def matches_extension(self, file_path: str) -> bool:
        return os.path.splitext(file_path)[1].lower() in self.include_extensions

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def start(self) -> None:
        """Ensure the default topic, schedule the seed scan and attach one watcher per folder."""
        if self.is_running():
            self.logging.warning("File watcher already running")
            return
        if not self.enabled:
            self.logging.info("Folder watching disabled")
            return
        if not self.watch_folders:
            self.logging.info("No watch folders configured, skipping file watcher setup")
            return

        topic = await self.topic_manager.ensure_default_topic()
        self.logging.info("Default topic '%s' ready for folder watching", topic.name)

        self._stop_event = asyncio.Event()
        # seed off the startup path
        self._seed_task = asyncio.create_task(self.seed())
        for folder in self.watch_folders:
            self._watch_tasks.append(asyncio.create_task(self._watch_loop(folder)))
            self.logging.info("Watching folder %s (%s)", folder, "recursive" if self.recursive else "non-recursive")

    async def stop(self) -> None:
        """Stop every watcher and drop pending changes."""
        if self._stop_event is not None:
            self._stop_event.set()
        tasks = [t for t in [*self._watch_tasks, self._seed_task, self._debounce_task] if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._watch_tasks = []
        self._seed_task = None
        self._debounce_task = None
        self._stop_event = None
        self._pending.clear()
        self.logging.info("File watcher stopped")

    async def _watch_loop(self, folder: str) -> None:
        def should_watch(change: watchfiles.Change, path: str) -> bool:
            return self.matches_extension(path)

        try:
            async for changes in watchfiles.awatch(
                folder,
                watch_filter=should_watch,
                stop_event=self._stop_event,
                recursive=self.recursive,
            ):
                for change, path in changes:
                    self.logging.debug("Change detected: %s %s", change.name, path)
                    self.handle_file_change(path)
        except asyncio.CancelledError:
            self.logging.debug("Watch loop cancelled for %s", folder)
            raise
        except Exception as e:
            self.logging.error("Watch loop error for %s: %s", folder, e)

    ##########################################
    ################ DEBOUNCE ################
    ##########################################

    def handle_file_change(self, file_path: str) -> None:
        """Queue a created, changed or deleted file and restart the debounce timer.

        Args:
            file_path (str): Path reported by the filesystem watcher.
        """
        if not self.matches_extension(file_path):
            self.logging.debug("Skipping file with unsupported extension: %s", file_path)
            return
        self._pending.add(normalize_path(file_path))
        if self._batch_lock.locked():
            # picked up when the running batch re-arms the timer
            return
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._delayed_drain())

    def pending_changes(self) -> list[str]:
        return sorted(self._pending)

    async def _delayed_drain(self) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return
        await self._drain()

    async def _drain(self) -> None:
        if self._batch_lock.locked() or not self._pending:
            return
        async with self._batch_lock:
            batch = sorted(self._pending)
            self._pending.clear()
            try:
                self.logging.info("Processing %d changed file(s)", len(batch))
                await self.process_batch(batch)
            except Exception as e:
                self.logging.error("Failed to process file changes: %s", e)
        self._rearm()

    def _rearm(self) -> None:
        if not self._pending:
            return
        task = self._debounce_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._debounce_task = asyncio.create_task(self._delayed_drain())

    ##########################################
    ############### PROCESSING ###############
    ##########################################

    async def process_batch(self, file_paths: list[str]) -> list[Document]:
        """Re-index a batch of changed files into the default topic.

        Deleted files leave the index. Every existing file loses its previous
        version first and is then added again; files are added one after the
        other so pause and progress stay per-file.

        Args:
            file_paths (list[str]): Changed files.

        Returns:
            list[Document]: Documents added by this batch.
        """
        topic = await self.topic_manager.ensure_default_topic()
        existing = [p for p in file_paths if os.path.isfile(p)]
        deleted = [p for p in file_paths if not os.path.isfile(p)]

        for file_path in deleted:
            if await self.topic_manager.remove_document_by_file_path(topic.id, file_path):
                self.logging.info("Removed deleted file from index: %s", file_path)

        if not existing:
            self.logging.info("No files to add after filtering")
            return []

        for file_path in existing:
            await self.topic_manager.remove_document_by_file_path(topic.id, file_path)
        added = await self.topic_manager.add_documents(topic.id, existing)
        self.logging.info("Watch folder update complete: %d of %d file(s) indexed", len(added), len(existing))
        return added

    def _list_folder_files(self, folder: str) -> list[str]:
        if self.recursive:
            files = [os.path.join(root, name) for root, _, names in os.walk(folder) for name in names]
        else:
            files = [entry.path for entry in os.scandir(folder) if entry.is_file()]
        return sorted(normalize_path(f) for f in files if self.matches_extension(f))

    async def find_unindexed_files(self) -> list[str]:
        """
        Returns watched files that the default topic does not know yet or that
        were modified after they were indexed.
        """
        topic = await self.topic_manager.ensure_default_topic()
        known = {normalize_path(doc.file_path): doc for doc in self.topic_manager.get_topic_documents(topic.id)}
        candidates: list[str] = []
        for folder in self.watch_folders:
            files = await asyncio.to_thread(self._list_folder_files, folder)
            for file_path in files:
                document = known.get(file_path)
                if document is None or os.path.getmtime(file_path) * 1000 > document.added_at:
                    candidates.append(file_path)
        return candidates

    async def seed(self) -> int:
        """Index everything in the watch folders that is missing or stale.

        Runs under the batch lock, changes reported meanwhile are drained afterwards.

        Returns:
            int: Number of documents added.
        """
        added = 0
        try:
            async with self._batch_lock:
                candidates = await self.find_unindexed_files()
                if candidates:
                    self.logging.info("Seeding %d file(s) from watch folders", len(candidates))
                    added = len(await self.process_batch(candidates))
                else:
                    self.logging.info("Watch folders are up to date")
        except Exception as e:
            self.logging.error("Initial scan of watch folders failed: %s", e)
        self._rearm()
        return added
