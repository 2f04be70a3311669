"""Tests for fetching and rebuilding documents."""

import asyncio
from dataclasses import replace

import pytest

from claystore.core.contracts import ChunkRecord, Config
from claystore.core.errors import (
    DecodeError,
    IncompleteChunkSet,
    MalformedPayload,
    NotFound,
    RequestTimeout,
)
from claystore.storage.backends import InMemoryBackend
from claystore.storage.codec import decode_object, encode_chunk, encode_manifest, serialize_document
from claystore.storage.downloader import Downloader
from claystore.storage.uploader import ChunkUploader
from claystore.sync.cache import ReferenceCache
from claystore.sync.resolver import ReferenceResolver

from conftest import StepClock, make_document

SMALL_CHUNKS = Config(single_object_threshold=200, chunk_payload_bytes=100)


def _downloader(backend, config=SMALL_CHUNKS):
    resolver = ReferenceResolver(backend, ReferenceCache(), config)
    return Downloader(backend, resolver, config)


async def _chunked_save(backend, document=None):
    document = document or make_document(description="x" * 1000)
    uploader = ChunkUploader(backend, SMALL_CHUNKS, StepClock())
    result = await uploader.save(document)
    manifest = decode_object(backend.bodies[result.object_id]).manifest
    return document, result, manifest


async def _write_untagged(backend, body):
    # No tags: the identifier can only be fetched directly
    return await backend.write(body, [])


@pytest.mark.asyncio
async def test_download_single_object_by_project_and_object_id(document):
    backend = InMemoryBackend()
    result = await ChunkUploader(backend, Config()).save(document)
    downloader = _downloader(backend, Config())

    assert await downloader.download(document.id) == document
    assert await downloader.download(result.object_id) == document


@pytest.mark.asyncio
async def test_download_chunked_document():
    backend = InMemoryBackend()
    document, _, manifest = await _chunked_save(backend)

    loaded = await _downloader(backend).download(document.id)

    assert manifest.total_chunks > 2
    assert loaded == document


@pytest.mark.asyncio
async def test_fetch_raw_returns_saved_bytes():
    backend = InMemoryBackend()
    document, result, _ = await _chunked_save(backend)

    raw = await _downloader(backend).fetch_raw(result.object_id)

    assert raw == serialize_document(document)


@pytest.mark.asyncio
async def test_unknown_identifier_raises_not_found():
    with pytest.raises(NotFound) as exc_info:
        await _downloader(InMemoryBackend()).download("clay-missing")

    assert exc_info.value.identifier == "clay-missing"


@pytest.mark.asyncio
async def test_unpropagated_latest_falls_back_to_direct_fetch(document):
    backend = InMemoryBackend(alias_lag=True)
    uploader = ChunkUploader(backend, Config(), StepClock())
    first = await uploader.save(document)
    backend.publish()
    await uploader.save(replace(document, name="Teapot v2"), root_tx_id=first.object_id)

    loaded = await _downloader(backend, Config()).download(first.object_id)

    assert loaded.name == "Teapot"


@pytest.mark.asyncio
async def test_shortened_manifest_reports_missing_index():
    backend = InMemoryBackend()
    _, _, manifest = await _chunked_save(backend)
    shortened = replace(manifest, chunk_ids=manifest.chunk_ids[:1] + manifest.chunk_ids[2:])
    manifest_id = await _write_untagged(backend, encode_manifest(shortened))

    with pytest.raises(IncompleteChunkSet) as exc_info:
        await _downloader(backend).download(manifest_id)

    assert exc_info.value.missing_indices == [1]


@pytest.mark.asyncio
async def test_missing_chunk_body_is_incomplete():
    backend = InMemoryBackend()
    _, _, manifest = await _chunked_save(backend)
    chunk_ids = list(manifest.chunk_ids)
    chunk_ids[0] = "never-written"
    manifest_id = await _write_untagged(
        backend, encode_manifest(replace(manifest, chunk_ids=chunk_ids))
    )

    with pytest.raises(IncompleteChunkSet) as exc_info:
        await _downloader(backend).download(manifest_id)

    assert exc_info.value.missing_indices == [0]


@pytest.mark.asyncio
async def test_reordered_manifest_is_malformed():
    backend = InMemoryBackend()
    _, _, manifest = await _chunked_save(backend)
    chunk_ids = list(manifest.chunk_ids)
    chunk_ids[0], chunk_ids[1] = chunk_ids[1], chunk_ids[0]
    manifest_id = await _write_untagged(
        backend, encode_manifest(replace(manifest, chunk_ids=chunk_ids))
    )

    with pytest.raises(MalformedPayload):
        await _downloader(backend).download(manifest_id)


@pytest.mark.asyncio
async def test_chunk_from_other_set_is_malformed():
    backend = InMemoryBackend()
    _, _, manifest = await _chunked_save(backend)
    stray = ChunkRecord("other-set", 0, manifest.total_chunks, "QUJD")
    stray_id = await _write_untagged(backend, encode_chunk(stray, "p", "n"))
    chunk_ids = [stray_id] + manifest.chunk_ids[1:]
    manifest_id = await _write_untagged(
        backend, encode_manifest(replace(manifest, chunk_ids=chunk_ids))
    )

    with pytest.raises(MalformedPayload):
        await _downloader(backend).download(manifest_id)


@pytest.mark.asyncio
async def test_corrupt_chunk_payload_raises_decode_error():
    backend = InMemoryBackend()
    _, _, manifest = await _chunked_save(backend)
    corrupt = ChunkRecord(manifest.chunk_set_id, 0, manifest.total_chunks, "@@@@")
    corrupt_id = await _write_untagged(backend, encode_chunk(corrupt, "p", "n"))
    chunk_ids = [corrupt_id] + manifest.chunk_ids[1:]
    manifest_id = await _write_untagged(
        backend, encode_manifest(replace(manifest, chunk_ids=chunk_ids))
    )

    with pytest.raises(DecodeError):
        await _downloader(backend).download(manifest_id)


@pytest.mark.asyncio
async def test_non_document_body_is_malformed():
    backend = InMemoryBackend()
    object_id = await _write_untagged(backend, b'{"hello": "world"}')

    with pytest.raises(MalformedPayload):
        await _downloader(backend).download(object_id)


class _SlowGateway(InMemoryBackend):
    async def read(self, object_id):
        await asyncio.sleep(1)
        return None


@pytest.mark.asyncio
async def test_gateway_timeout_raises_request_timeout():
    backend = _SlowGateway()
    config = Config(request_timeout=0.05)

    with pytest.raises(RequestTimeout):
        await _downloader(backend, config).download("anything")


@pytest.mark.asyncio
async def test_download_reports_progress_per_chunk():
    backend = InMemoryBackend()
    document, _, manifest = await _chunked_save(backend)
    reports = []

    loaded = await _downloader(backend).download(document.id, on_progress=reports.append)

    assert loaded == document
    assert [report.completed for report in reports] == list(range(1, manifest.total_chunks + 1))
    assert {report.total_chunks for report in reports} == {manifest.total_chunks}


@pytest.mark.asyncio
async def test_single_object_download_reports_no_progress(document):
    backend = InMemoryBackend()
    await ChunkUploader(backend, Config()).save(document)
    reports = []

    await _downloader(backend, Config()).download(document.id, on_progress=reports.append)

    assert reports == []
