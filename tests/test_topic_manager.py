import asyncio
import os
import zipfile

import pytest

from shared.errors import (
    ArchiveInvalidError,
    DuplicateNameError,
    ModelMismatchError,
    NotFoundError,
    NotInitializedError,
    ReadOnlyTopicError,
    VectorStoreUnavailableError,
)
from shared.helper.constants import (
    DEFAULT_TOPIC_NAME,
    EVENT_TOPIC_DELETED,
    EVENT_TOPIC_VECTOR_STORE_DELETED,
    EVENT_TOPICS_MODEL_CHANGED,
)

from fakes import FakeVectorStore, ten_chunk_text, write_file


async def test_add_and_remove_document_keeps_counts_consistent(topic_manager, env):
    topic = await topic_manager.create_topic("Docs")
    file_path = write_file(env / "docs" / "guide.md", ten_chunk_text())

    added = await topic_manager.add_documents(topic.id, [file_path])

    assert len(added) == 1
    assert added[0].chunk_count == 10
    assert added[0].file_type == "markdown"
    assert topic_manager.get_topic(topic.id).document_count == 1
    usage = topic_manager.get_folder_usage(topic.id)
    assert usage.roots[str(env / "docs")].chunk_count == 10
    stats = await topic_manager.get_topic_stats(topic.id)
    assert stats.chunk_count == 10
    assert stats.embedding_model == "nomic-embed-text"

    assert await topic_manager.remove_document_by_file_path(topic.id, file_path) is True

    assert topic_manager.get_topic(topic.id).document_count == 0
    assert topic_manager.get_topic_documents(topic.id) == []
    assert topic_manager.get_folder_usage(topic.id).roots == {}
    store = await topic_manager.get_vector_store(topic.id)
    assert await store.count() == 0
    assert await topic_manager.remove_document_by_file_path(topic.id, file_path) is False


async def test_failing_file_does_not_stop_the_batch(topic_manager, env):
    topic = await topic_manager.create_topic("Docs")
    empty = write_file(env / "docs" / "empty.md", "")
    good = write_file(env / "docs" / "good.md", "some useful text")

    added = await topic_manager.add_documents(topic.id, [empty, good])

    assert [doc.name for doc in added] == ["good.md"]
    assert topic_manager.get_topic(topic.id).document_count == 1


async def test_topic_names_are_unique_case_insensitively(topic_manager):
    await topic_manager.create_topic("Docs")

    with pytest.raises(DuplicateNameError):
        await topic_manager.create_topic("docs")


async def test_update_topic_renames_and_rejects_taken_names(topic_manager):
    docs = await topic_manager.create_topic("Docs")
    await topic_manager.create_topic("Notes")

    renamed = await topic_manager.update_topic(docs.id, name="Manuals", description="All manuals")
    assert renamed.name == "Manuals"
    assert topic_manager.find_topic_by_name("manuals").description == "All manuals"

    with pytest.raises(DuplicateNameError):
        await topic_manager.update_topic(docs.id, name="NOTES")
    with pytest.raises(NotFoundError):
        await topic_manager.update_topic("topic-missing", name="x")


async def test_delete_topic_removes_everything_and_notifies(topic_manager, event_bus, env):
    events = []
    await event_bus.subscribe(EVENT_TOPIC_DELETED, events.append)
    topic = await topic_manager.create_topic("Docs")
    await topic_manager.add_documents(topic.id, [write_file(env / "a.md", "alpha beta")])

    await topic_manager.delete_topic(topic.id)

    assert topic_manager.get_topic(topic.id) is None
    assert events == [{"topicId": topic.id}]
    assert not os.path.exists(os.path.join(topic_manager.database_dir, f"topic-{topic.id}-documents.json"))
    assert not os.path.exists(os.path.join(topic_manager.database_dir, f"vector-{topic.id}-metadata.json"))


async def test_delete_vector_store_keeps_topic(topic_manager, event_bus, env):
    events = []
    await event_bus.subscribe(EVENT_TOPIC_VECTOR_STORE_DELETED, events.append)
    topic = await topic_manager.create_topic("Docs")
    await topic_manager.add_documents(topic.id, [write_file(env / "a.md", "alpha beta")])

    await topic_manager.delete_topic_vector_store(topic.id)

    assert topic_manager.get_topic(topic.id) is not None
    assert events == [{"topicId": topic.id}]
    with pytest.raises(VectorStoreUnavailableError):
        await topic_manager.get_vector_store(topic.id)


async def test_vector_store_of_empty_topic_is_unavailable(topic_manager):
    topic = await topic_manager.create_topic("Empty")

    with pytest.raises(VectorStoreUnavailableError):
        await topic_manager.get_vector_store(topic.id)
    with pytest.raises(NotFoundError):
        await topic_manager.get_vector_store("topic-missing")


async def test_failed_first_write_leaves_the_store_unavailable(topic_manager, env, monkeypatch):
    topic = await topic_manager.create_topic("Docs")

    async def broken_add(self, chunks):
        raise RuntimeError("disk full")

    monkeypatch.setattr(FakeVectorStore, "add_chunks", broken_add)
    added = await topic_manager.add_documents(topic.id, [write_file(env / "a.md", "alpha beta")])

    assert added == []
    with pytest.raises(VectorStoreUnavailableError):
        await topic_manager.get_vector_store(topic.id)


async def test_default_topic_is_created_once(topic_manager):
    first = await topic_manager.ensure_default_topic()
    second = await topic_manager.ensure_default_topic()

    assert first.id == second.id
    assert first.name == DEFAULT_TOPIC_NAME
    assert len(topic_manager.get_all_topics()) == 1


async def test_operations_require_initialization(make_topic_manager):
    manager = make_topic_manager()

    assert not manager.is_initialized()
    with pytest.raises(NotInitializedError):
        await manager.create_topic("Docs")


async def test_concurrent_initialization_runs_once(make_topic_manager):
    manager = make_topic_manager()

    await asyncio.gather(manager.ensure_initialized(), manager.ensure_initialized())

    assert manager.is_initialized()
    manager.dispose()


async def test_registry_is_reloaded_from_disk(topic_manager, make_topic_manager, env):
    topic = await topic_manager.create_topic("Docs", description="persisted")
    await topic_manager.add_documents(topic.id, [write_file(env / "docs" / "a.md", ten_chunk_text())])
    topic_manager.dispose()

    reloaded = make_topic_manager()
    await reloaded.ensure_initialized()

    restored = reloaded.get_topic(topic.id)
    assert restored.name == "Docs"
    assert restored.description == "persisted"
    assert restored.document_count == 1
    assert reloaded.get_topic_documents(topic.id)[0].chunk_count == 10
    assert reloaded.get_folder_usage(topic.id).total_chunks == 10
    reloaded.dispose()


async def test_pause_holds_the_batch_until_resume(topic_manager, progress, env):
    topic = await topic_manager.create_topic("Docs")
    files = [write_file(env / "a.md", "first file"), write_file(env / "b.md", "second file")]
    await progress.pause()

    batch = asyncio.create_task(topic_manager.add_documents(topic.id, files))
    await asyncio.sleep(0.05)
    assert not batch.done()
    assert topic_manager.get_topic_documents(topic.id) == []

    await progress.resume()
    added = await asyncio.wait_for(batch, timeout=2)

    assert len(added) == 2
    assert topic_manager.get_topic(topic.id).document_count == 2


async def test_writes_never_mix_embedding_models(topic_manager, embed_client, env):
    topic = await topic_manager.create_topic("Docs")
    await topic_manager.add_documents(topic.id, [write_file(env / "a.md", "alpha beta")])
    embed_client.embed_model = "mxbai-embed-large"

    added = await topic_manager.add_documents(topic.id, [write_file(env / "b.md", "gamma delta")])

    assert added == []
    assert topic_manager.get_topic(topic.id).document_count == 1
    stats = await topic_manager.get_topic_stats(topic.id)
    assert stats.embedding_model == "nomic-embed-text"


async def test_reading_requires_the_stored_model_to_be_available(topic_manager, embed_client, env):
    topic = await topic_manager.create_topic("Docs")
    await topic_manager.add_documents(topic.id, [write_file(env / "a.md", "alpha beta")])
    embed_client.embed_model = "mxbai-embed-large"
    embed_client.available_models = ["mxbai-embed-large"]

    with pytest.raises(ModelMismatchError) as excinfo:
        await topic_manager.get_vector_store(topic.id)
    assert excinfo.value.stored_model == "nomic-embed-text"
    assert excinfo.value.current_model == "mxbai-embed-large"

    embed_client.available_models = ["mxbai-embed-large", "nomic-embed-text:latest"]
    assert await topic_manager.get_vector_store(topic.id) is not None


async def test_model_change_notifies_subscribers(topic_manager, embed_client, event_bus):
    events = []
    await event_bus.subscribe(EVENT_TOPICS_MODEL_CHANGED, events.append)
    topic = await topic_manager.create_topic("Docs")
    embed_client.embed_model = "mxbai-embed-large"

    await topic_manager.reinitialize_with_new_model()

    assert events == [{"topicIds": [topic.id], "model": "mxbai-embed-large"}]
    assert topic_manager.get_model_name() == "mxbai-embed-large"


##########################################
############# EXPORT / IMPORT ############
##########################################


async def test_export_then_import_renames_on_collision(topic_manager, env):
    topic = await topic_manager.create_topic("Docs", description="handbook")
    await topic_manager.add_documents(
        topic.id,
        [write_file(env / "docs" / "a.md", ten_chunk_text()), write_file(env / "docs" / "b.md", "short text")],
    )
    archive = await topic_manager.export_topic(topic.id, str(env / "exports" / "docs.rag"))

    with zipfile.ZipFile(archive) as zf:
        names = zf.namelist()
    assert "topic.json" in names
    assert any(name.startswith(f"vectors/nomic-embed-text/{topic.id}.lance/") for name in names)

    imported = await topic_manager.import_topic(archive)

    assert imported.id != topic.id
    assert imported.name == "Docs (imported)"
    assert imported.description == "handbook"
    assert imported.document_count == 2
    original_counts = sorted(doc.chunk_count for doc in topic_manager.get_topic_documents(topic.id))
    imported_docs = topic_manager.get_topic_documents(imported.id)
    assert sorted(doc.chunk_count for doc in imported_docs) == original_counts
    assert all(doc.topic_id == imported.id for doc in imported_docs)
    store = await topic_manager.get_vector_store(imported.id)
    assert await store.count() == 11
    stats = await topic_manager.get_topic_stats(imported.id)
    assert stats.chunk_count == 11


async def test_import_keeps_name_without_collision(topic_manager, env):
    topic = await topic_manager.create_topic("Docs")
    await topic_manager.add_documents(topic.id, [write_file(env / "a.md", "alpha")])
    archive = await topic_manager.export_topic(topic.id, str(env / "docs.rag"))
    await topic_manager.delete_topic(topic.id)

    imported = await topic_manager.import_topic(archive)

    assert imported.name == "Docs"


async def test_repeated_imports_get_numbered_names(topic_manager, env):
    topic = await topic_manager.create_topic("Docs")
    await topic_manager.add_documents(topic.id, [write_file(env / "a.md", "alpha")])
    archive = await topic_manager.export_topic(topic.id, str(env / "docs.rag"))

    first = await topic_manager.import_topic(archive)
    second = await topic_manager.import_topic(archive)
    third = await topic_manager.import_topic(archive)

    assert [first.name, second.name, third.name] == ["Docs (imported)", "Docs (imported 2)", "Docs (imported 3)"]
    assert sorted(t.name for t in topic_manager.get_all_topics()) == [
        "Docs",
        "Docs (imported 2)",
        "Docs (imported 3)",
        "Docs (imported)",
    ]


async def test_import_rejects_invalid_archives(topic_manager, env):
    no_metadata = str(env / "empty.rag")
    with zipfile.ZipFile(no_metadata, "w") as zf:
        zf.writestr("readme.txt", "nothing here")
    not_a_zip = write_file(env / "plain.rag", "plain text")

    with pytest.raises(ArchiveInvalidError):
        await topic_manager.import_topic(no_metadata)
    with pytest.raises(ArchiveInvalidError):
        await topic_manager.import_topic(not_a_zip)
    assert topic_manager.get_all_topics() == []


##########################################
############# COMMON DATABASE ############
##########################################


async def _build_common_registry(make_topic_manager, monkeypatch, env, topic_name: str) -> str:
    common_dir = str(env / "common")
    monkeypatch.setenv("DATABASE_DIR", common_dir)
    manager = make_topic_manager()
    await manager.ensure_initialized()
    topic = await manager.create_topic(topic_name)
    await manager.add_documents(topic.id, [write_file(env / "shared" / "faq.md", "frequently asked questions")])
    manager.dispose()
    monkeypatch.setenv("DATABASE_DIR", str(env / "database"))
    return common_dir


async def test_common_registry_is_mounted_read_only(make_topic_manager, monkeypatch, env):
    common_dir = await _build_common_registry(make_topic_manager, monkeypatch, env, "Team FAQ")
    monkeypatch.setenv("COMMON_DATABASE_PATH", common_dir)
    manager = make_topic_manager()
    await manager.ensure_initialized()
    await manager.create_topic("Docs")

    common = manager.find_topic_by_name("team faq")
    assert common is not None
    assert common.source == "common"
    assert manager.is_common_topic(common.id)
    assert manager.get_common_database_path() == os.path.normpath(common_dir)
    assert [t.source for t in manager.get_all_topics()] == ["local", "common"]
    assert len(manager.get_topic_documents(common.id)) == 1

    store = await manager.get_vector_store(common.id)
    assert await store.count() == 1
    with pytest.raises(ReadOnlyTopicError):
        await manager.update_topic(common.id, name="Mine")
    with pytest.raises(ReadOnlyTopicError):
        await manager.export_topic(common.id, str(env / "faq.rag"))
    manager.dispose()


async def test_common_registry_with_name_collision_is_not_loaded(make_topic_manager, monkeypatch, env):
    common_dir = await _build_common_registry(make_topic_manager, monkeypatch, env, "Docs")
    manager = make_topic_manager()
    await manager.ensure_initialized()
    await manager.create_topic("docs")

    assert await manager.load_common_database(common_dir) is False

    assert [t.source for t in manager.get_all_topics()] == ["local"]
    assert manager.get_common_database_path() is None
    manager.dispose()


async def test_missing_common_path_is_skipped(topic_manager, env):
    assert await topic_manager.load_common_database(str(env / "nowhere")) is False
    assert await topic_manager.load_common_database("") is False
