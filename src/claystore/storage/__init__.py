"""
Storage layer: chunking, wire formats, backends, upload and download paths.
"""

from claystore.storage.backends import InMemoryBackend, system_clock, with_timeout
from claystore.storage.chunking import encoded_chunk_width, reassemble, split
from claystore.storage.codec import decode_object, parse_document, serialize_document
from claystore.storage.downloader import Downloader
from claystore.storage.local_backend import LocalDirectoryBackend
from claystore.storage.uploader import ChunkUploader, ChunkProgress, ManifestBuilder

__all__ = [
    "InMemoryBackend",
    "LocalDirectoryBackend",
    "system_clock",
    "with_timeout",
    "split",
    "reassemble",
    "encoded_chunk_width",
    "serialize_document",
    "parse_document",
    "decode_object",
    "ChunkUploader",
    "ChunkProgress",
    "ManifestBuilder",
    "Downloader",
]
