"""Identifiers, file names and defaults shared across the localrag core."""

APP_NAME = "localrag"
APP_DISPLAY_NAME = "LocalRAG"

# storage layout
DATABASE_DIR_NAME = "database"
TOPICS_INDEX_FILENAME = "topics.json"
VECTOR_DIR_NAME = "lancedb"
VECTOR_TABLE_SUFFIX = ".lance"
DEFAULT_TOPIC_NAME = "Default"
DEFAULT_TOPIC_DESCRIPTION = "Automatically managed topic for watched folders"

# export archive
EXPORT_FORMAT_VERSION = "1.0"
EXPORT_METADATA_ENTRY = "topic.json"
EXPORT_VECTOR_PREFIX = "vectors"
EXPORT_FILE_SUFFIX = ".rag"

# http api
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3875
DEFAULT_SEARCH_LIMIT = 10

# ingestion
DEFAULT_INCLUDE_EXTENSIONS = [".pdf", ".md", ".markdown", ".html", ".htm", ".txt"]
DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 100
DEFAULT_WATCH_DEBOUNCE_SECONDS = 2.0
DEFAULT_PROGRESS_COMPLETE_DELAY = 2.0

# retrieval
DEFAULT_RETRIEVAL_STRATEGY = "hybrid"
RETRIEVAL_STRATEGIES = ("vector", "keyword", "hybrid")
DEFAULT_HYBRID_ALPHA = 0.7

# event bus topics
EVENT_TOPIC_DELETED = "topic.deleted"
EVENT_TOPIC_VECTOR_STORE_DELETED = "topic.vector_store_deleted"
EVENT_TOPICS_MODEL_CHANGED = "topics.model_changed"
EVENT_PROGRESS_CHANGED = "progress.changed"
EVENT_PROGRESS_COMPLETE = "progress.complete"
EVENT_PROGRESS_CLEARED = "progress.cleared"
EVENT_INDEXING_PAUSED = "indexing.paused"
EVENT_INDEXING_RESUMED = "indexing.resumed"
