from __future__ import annotations

from conftest import ScriptedEmbeddingClient, add_processed_document, permanent_error, run
from tutor_rag.embedding_cache import EmbeddingCache
from tutor_rag.embeddings import CachedEmbedder
from tutor_rag.retriever import ChunkRetriever


def test_retriever_returns_relevant_chunks(repository, embedder, vector_store) -> None:
    add_processed_document(repository, "photo", "Photosynthesis")
    add_processed_document(repository, "resp", "Respiration")
    chunks = {
        ("photo", 0): "Photosynthesis lets plants turn light into energy using chlorophyll.",
        ("resp", 0): "Cellular respiration happens in the mitochondria of the cell.",
    }
    for (document_id, index), text in chunks.items():
        vector_store.upsert_chunk(document_id, index, text, 10, run(embedder.embed(text)))

    retriever = ChunkRetriever(embedder, vector_store, limit=5)
    results = run(retriever.retrieve("How do plants use light?", "bio101"))

    assert results
    assert results[0].document_id == "photo"
    assert all(result.document_id != "resp" for result in results)


def test_retriever_returns_empty_when_embedding_fails(repository, vector_store) -> None:
    add_processed_document(repository, "doc", "Notes")
    vector_store.upsert_chunk("doc", 0, "text", 1, [1.0, 0.0])
    client = ScriptedEmbeddingClient(errors=[permanent_error()])
    retriever = ChunkRetriever(CachedEmbedder(client, EmbeddingCache(max_size=5)), vector_store)

    assert run(retriever.retrieve("anything", "bio101")) == []


def test_blank_query_skips_embedding(vector_store) -> None:
    client = ScriptedEmbeddingClient()
    retriever = ChunkRetriever(CachedEmbedder(client, EmbeddingCache(max_size=5)), vector_store)

    assert run(retriever.retrieve("   ", "bio101")) == []
    assert client.calls == 0


def test_retriever_passes_threshold_and_limit(repository, vector_store) -> None:
    add_processed_document(repository, "doc", "Notes")
    vector_store.upsert_chunk("doc", 0, "close", 1, [1.0, 0.1])
    vector_store.upsert_chunk("doc", 1, "far", 1, [0.1, 1.0])
    vector_store.upsert_chunk("doc", 2, "closer", 1, [1.0, 0.0])
    client = ScriptedEmbeddingClient(vector=[1.0, 0.0])
    retriever = ChunkRetriever(
        CachedEmbedder(client, EmbeddingCache(max_size=5)),
        vector_store,
        limit=1,
        similarity_threshold=0.5,
    )

    results = run(retriever.retrieve("query", "bio101"))

    assert [result.content for result in results] == ["closer"]
