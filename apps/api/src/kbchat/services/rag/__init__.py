from kbchat.services.rag.chunker import split_into_chunks
from kbchat.services.rag.types import Record, RecordMetadata, SearchHit, SyncResult
from kbchat.services.rag.vector_store import VectorStore, cosine_similarity

__all__ = [
    "Record",
    "RecordMetadata",
    "SearchHit",
    "SyncResult",
    "VectorStore",
    "cosine_similarity",
    "split_into_chunks",
]
