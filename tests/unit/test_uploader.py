"""Tests for single-object and chunked saves."""

import json

import pytest

from claystore.core import tags as tagnames
from claystore.core.contracts import Config
from claystore.core.errors import ChunkUploadFailed, RequestTimeout
from claystore.storage.backends import InMemoryBackend
from claystore.storage.codec import decode_chunk, decode_object, serialize_document
from claystore.storage.uploader import ChunkUploader, ChunkProgress, ManifestBuilder

from conftest import StepClock, make_document

SMALL_CHUNKS = Config(single_object_threshold=200, chunk_payload_bytes=100)


def _tags_of(backend, object_id):
    return backend.entries[object_id].tag_map()


def _manifests(backend):
    return [
        object_id
        for object_id, entry in backend.entries.items()
        if entry.tag_map().get(tagnames.DATA_TYPE) == tagnames.KIND_MANIFEST
    ]


@pytest.mark.asyncio
async def test_small_document_is_one_object(document):
    backend = InMemoryBackend()
    uploader = ChunkUploader(backend, Config(), StepClock())

    result = await uploader.save(document, folder="/kitchen")

    assert not result.was_chunked
    assert not result.is_update
    assert result.root_tx_id == result.object_id
    assert backend.bodies[result.object_id] == serialize_document(document)

    tags = _tags_of(backend, result.object_id)
    assert tags[tagnames.APP_NAME] == "GetClayed"
    assert tags[tagnames.DATA_TYPE] == tagnames.KIND_DOCUMENT
    assert tags[tagnames.PROJECT_ID] == document.id
    assert tags[tagnames.AUTHOR] == "0xabcdef"
    assert tags[tagnames.FOLDER] == "/kitchen"
    assert tags["Tag-0"] == "ceramic"
    assert tags[tagnames.VERSION] == "2.0"
    assert tagnames.ROOT_TX not in tags


@pytest.mark.asyncio
async def test_update_carries_root_pointer(document):
    backend = InMemoryBackend()
    uploader = ChunkUploader(backend, Config(), StepClock())

    result = await uploader.save(document, root_tx_id="root-object")

    assert result.is_update
    assert result.root_tx_id == "root-object"
    assert _tags_of(backend, result.object_id)[tagnames.ROOT_TX] == "root-object"


@pytest.mark.asyncio
async def test_threshold_is_inclusive(document):
    size = len(serialize_document(document))

    at_limit = ChunkUploader(InMemoryBackend(), Config(single_object_threshold=size))
    over_limit = ChunkUploader(
        InMemoryBackend(), Config(single_object_threshold=size - 1, chunk_payload_bytes=100)
    )

    assert not (await at_limit.save(document)).was_chunked
    assert (await over_limit.save(document)).was_chunked


@pytest.mark.asyncio
async def test_out_of_order_completion_keeps_manifest_in_index_order():
    document = make_document(description="x" * 1000)

    def reverse_delay(data, tags):
        index = {tag.name: tag.value for tag in tags}.get(tagnames.CHUNK_INDEX)
        return 0 if index is None else (30 - int(index)) * 0.005

    backend = InMemoryBackend(write_delay=reverse_delay)
    uploader = ChunkUploader(backend, SMALL_CHUNKS, StepClock())

    result = await uploader.save(document)

    manifest = decode_object(backend.bodies[result.object_id]).manifest
    assert result.was_chunked
    assert manifest.total_chunks == result.total_chunks > 2
    indices = [
        decode_chunk(backend.bodies[chunk_id]).chunk_index for chunk_id in manifest.chunk_ids
    ]
    assert indices == list(range(manifest.total_chunks))

    chunk_writes = [oid for oid in backend.write_log if oid in manifest.chunk_ids]
    assert chunk_writes != manifest.chunk_ids
    # Manifest lands after every chunk
    assert backend.write_log[-1] == result.object_id


@pytest.mark.asyncio
async def test_chunk_and_manifest_tags():
    document = make_document(description="x" * 1000)
    backend = InMemoryBackend()
    uploader = ChunkUploader(backend, SMALL_CHUNKS, StepClock())

    result = await uploader.save(document, folder="/big", root_tx_id="root-object")

    manifest_tags = _tags_of(backend, result.object_id)
    manifest = decode_object(backend.bodies[result.object_id]).manifest
    assert manifest_tags[tagnames.CHUNK_SET_ID] == manifest.chunk_set_id
    assert manifest_tags[tagnames.TOTAL_CHUNKS] == str(manifest.total_chunks)
    assert manifest_tags[tagnames.ROOT_TX] == "root-object"
    assert tagnames.UPDATED_AT in manifest_tags

    first_chunk = _tags_of(backend, manifest.chunk_ids[0])
    assert first_chunk[tagnames.DATA_TYPE] == tagnames.KIND_CHUNK
    assert first_chunk[tagnames.CHUNK_INDEX] == "0"
    assert first_chunk[tagnames.FOLDER] == "/big"
    envelope = json.loads(backend.bodies[manifest.chunk_ids[0]])
    assert envelope["metadata"]["projectName"] == "Teapot"


@pytest.mark.asyncio
async def test_progress_reports_every_chunk():
    document = make_document(description="x" * 1000)
    reports = []
    uploader = ChunkUploader(InMemoryBackend(), SMALL_CHUNKS, StepClock())

    result = await uploader.save(document, on_progress=reports.append)

    assert [report.completed for report in reports] == list(range(1, result.total_chunks + 1))
    assert reports[-1].percentage == 100.0


@pytest.mark.asyncio
async def test_failed_chunk_publishes_no_manifest():
    document = make_document(description="x" * 1000)

    def fail_chunk_two(data, tags):
        return {tag.name: tag.value for tag in tags}.get(tagnames.CHUNK_INDEX) == "2"

    backend = InMemoryBackend(fail_writes_when=fail_chunk_two)
    uploader = ChunkUploader(backend, SMALL_CHUNKS, StepClock())

    with pytest.raises(ChunkUploadFailed) as exc_info:
        await uploader.save(document)

    assert exc_info.value.index == 2
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert _manifests(backend) == []


@pytest.mark.asyncio
async def test_chunk_timeout_aborts_save():
    document = make_document(description="x" * 1000)
    backend = InMemoryBackend(write_delay=lambda data, tags: 1.0)
    config = Config(single_object_threshold=200, chunk_payload_bytes=100, request_timeout=0.05)
    uploader = ChunkUploader(backend, config, StepClock())

    with pytest.raises(ChunkUploadFailed) as exc_info:
        await uploader.save(document)

    assert isinstance(exc_info.value.__cause__, RequestTimeout)
    assert backend.write_log == []


@pytest.mark.asyncio
async def test_single_object_timeout_raises_request_timeout(document):
    backend = InMemoryBackend(write_delay=lambda data, tags: 1.0)
    uploader = ChunkUploader(backend, Config(request_timeout=0.05), StepClock())

    with pytest.raises(RequestTimeout):
        await uploader.save(document)


def test_manifest_rejects_empty_slots():
    with pytest.raises(ValueError):
        ManifestBuilder.create_manifest("set", ["a", None], "p", "name", 0)


def test_manifest_created_at_is_iso():
    manifest = ManifestBuilder.create_manifest("set", ["a", "b"], "p", "name", 0)

    assert manifest.total_chunks == 2
    assert manifest.created_at.startswith("1970-01-01T00:00:00")


def test_progress_percentage():
    assert ChunkProgress(1, 4).percentage == 25.0
    assert ChunkProgress(0, 0).percentage == 100.0
