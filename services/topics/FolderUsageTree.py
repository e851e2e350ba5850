import json
import os
from typing import Callable

import aiofiles

from shared.helper.HelperConfig import HelperConfig
from shared.models.base import now_ms
from shared.models.document import normalize_path
from shared.models.folder import FolderNode, FolderUsageStats


class FolderUsageTree:
    """
    Per-topic forest of chunk counts grouped by source folder.

    Files below a watch folder hang off a root for that watch folder (the
    nearest one if watch folders nest), every other file hangs off a root for
    its parent directory. After every mutation the whole forest of the topic
    is recomputed so that each folder's chunk_count is the sum of its children.
    """

    def __init__(self, helper_config: HelperConfig, watch_folders_provider: Callable[[], list[str]] | None = None):
        self.logging = helper_config.get_logger()
        self._watch_folders_provider = watch_folders_provider or (lambda: [])
        self._stats: dict[str, FolderUsageStats] = {}

    def set_watch_folders_provider(self, provider: Callable[[], list[str]]) -> None:
        self._watch_folders_provider = provider

    ##########################################
    ################ HELPERS #################
    ##########################################

    def _resolve_root(self, file_path: str) -> tuple[str, str, list[str]]:
        """Find the root a file belongs to.

        Args:
            file_path (str): Normalized absolute path of the file.

        Returns:
            tuple[str, str, list[str]]: Root key, root display name and the path
                segments from the root down to the file.
        """
        best = None
        for folder in self._watch_folders_provider():
            folder = normalize_path(folder)
            if file_path == folder or file_path.startswith(folder.rstrip(os.sep) + os.sep):
                if best is None or len(folder) > len(best):
                    best = folder
        if best is not None:
            relative = os.path.relpath(file_path, best)
            parts = [p for p in relative.split(os.sep) if p and p != "."]
            return best, os.path.basename(best) or best, parts

        parent = os.path.dirname(file_path)
        return parent, os.path.basename(parent) or parent, [os.path.basename(file_path)]

    @staticmethod
    def _recompute(stats: FolderUsageStats) -> None:
        def total(node: FolderNode) -> int:
            if node.is_file:
                return node.chunk_count
            node.chunk_count = sum(total(child) for child in node.children.values())
            return node.chunk_count

        stats.total_chunks = sum(total(root) for root in stats.roots.values())
        stats.last_updated = now_ms()

    ##########################################
    ################# MUTATE #################
    ##########################################

    def update(self, topic_id: str, file_path: str, chunk_count: int) -> FolderUsageStats:
        """Insert or overwrite the chunk count of one file.

        Args:
            topic_id (str): The topic the file belongs to.
            file_path (str): Path of the ingested file.
            chunk_count (int): Number of chunks stored for the file.

        Returns:
            FolderUsageStats: The topic's updated forest.
        """
        stats = self._stats.setdefault(topic_id, FolderUsageStats())
        root_key, root_name, parts = self._resolve_root(normalize_path(file_path))
        if not parts:
            return stats

        node = stats.roots.get(root_key)
        if node is None:
            node = FolderNode(name=root_name, path=root_key)
            stats.roots[root_key] = node

        current_path = root_key
        for index, part in enumerate(parts):
            current_path = os.path.join(current_path, part)
            is_last = index == len(parts) - 1
            child = node.children.get(part)
            if child is None:
                child = FolderNode(name=part, path=current_path, is_file=is_last)
                node.children[part] = child
            node = child
            if is_last:
                node.is_file = True
                node.chunk_count = chunk_count

        self._recompute(stats)
        return stats

    def remove(self, topic_id: str, file_path: str) -> bool:
        """Remove one file and prune folders left empty.

        Args:
            topic_id (str): The topic the file belongs to.
            file_path (str): Path of the removed file.

        Returns:
            bool: True if the file was present in the tree.
        """
        stats = self._stats.get(topic_id)
        if stats is None:
            return False
        root_key, _, parts = self._resolve_root(normalize_path(file_path))
        root = stats.roots.get(root_key)
        if root is None or not parts:
            return False

        # (parent, key) pairs from the root down to the file
        trail: list[tuple[FolderNode, str]] = []
        node = root
        for part in parts:
            child = node.children.get(part)
            if child is None:
                return False
            trail.append((node, part))
            node = child

        parent, key = trail.pop()
        del parent.children[key]
        while trail:
            parent, key = trail.pop()
            child = parent.children[key]
            if child.children or child.is_file:
                break
            del parent.children[key]

        if not root.children and not root.is_file:
            del stats.roots[root_key]

        self._recompute(stats)
        return True

    def clear(self, topic_id: str) -> None:
        self._stats.pop(topic_id, None)

    ##########################################
    ################# GETTER #################
    ##########################################

    def get(self, topic_id: str) -> FolderUsageStats | None:
        return self._stats.get(topic_id)

    ##########################################
    ############## PERSISTENCE ###############
    ##########################################

    @staticmethod
    def serialize(stats: FolderUsageStats) -> dict:
        return stats.to_json_dict()

    @staticmethod
    def deserialize(data: dict) -> FolderUsageStats:
        return FolderUsageStats.model_validate(data)

    async def load(self, topic_id: str, path: str) -> FolderUsageStats | None:
        """Load a topic's snapshot. A missing or unreadable file leaves the topic without a tree.

        Args:
            topic_id (str): The topic to load.
            path (str): Location of the snapshot file.
        """
        if not os.path.exists(path):
            self.logging.debug("No folder usage snapshot for topic %s", topic_id)
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                stats = self.deserialize(json.loads(await f.read()))
        except (OSError, ValueError) as e:
            self.logging.warning("Could not load folder usage snapshot %s: %s", path, e)
            return None
        self._stats[topic_id] = stats
        return stats

    async def save(self, topic_id: str, path: str) -> None:
        """
        Write the topic's snapshot. Nothing is written for topics without a tree.
        """
        stats = self._stats.get(topic_id)
        if stats is None:
            return
        os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(self.serialize(stats), indent=2))
