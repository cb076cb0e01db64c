import pytest

from rental_search.cache.lru import TTLCache
from rental_search.common.clock import FrozenClock
from rental_search.ranking.service import RankingEngine
from rental_search.retrieval.adapters import KeywordAdapter, SemanticAdapter, StructuredAdapter
from rental_search.retrieval.embeddings import InMemoryVectorIndex
from rental_search.retrieval.repository import InMemoryListingStore
from rental_search.search.models import OrchestratorSettings
from rental_search.search.service import HybridSearchOrchestrator

from search_support import FIXED_TIME, VECTORS, StubEmbedder, make_listings


@pytest.fixture
def clock():
    return FrozenClock(FIXED_TIME)


@pytest.fixture
def listings():
    return make_listings()


@pytest.fixture
def store(listings):
    return InMemoryListingStore(listings)


@pytest.fixture
def index():
    vector_index = InMemoryVectorIndex(dimension=4)
    for listing_id, vector in VECTORS.items():
        vector_index.upsert(listing_id, vector)
    return vector_index


@pytest.fixture
def embedder():
    return StubEmbedder({"quiet flat": [0.0, 1.0, 0.0, 0.0]})


@pytest.fixture
def embedding_cache(clock):
    return TTLCache(max_entries=100, default_ttl_s=3600, clock=clock)


@pytest.fixture
def make_orchestrator(store, index, embedder, embedding_cache):
    built = []

    def _build(
        *,
        structured_store=None,
        semantic_store=None,
        semantic_embedder=None,
        keyword_store=None,
        with_semantic=True,
        **kwargs,
    ):
        semantic = None
        if with_semantic:
            semantic = SemanticAdapter(
                embedder=semantic_embedder or embedder,
                index=index,
                store=semantic_store or store,
                cache=embedding_cache,
            )
        kwargs.setdefault("settings", OrchestratorSettings(adapter_timeout_s=1.0, request_timeout_s=5.0))
        orchestrator = HybridSearchOrchestrator(
            structured=StructuredAdapter(structured_store or store),
            semantic=semantic,
            keyword=KeywordAdapter(keyword_store or store),
            ranking=RankingEngine(),
            **kwargs,
        )
        built.append(orchestrator)
        return orchestrator

    yield _build
    for orchestrator in built:
        orchestrator.close()
