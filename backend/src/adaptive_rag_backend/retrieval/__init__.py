"""Adaptive retrieval: parameter bandit, semantic answer cache, collaborators.

Components:
- RetrievalParams / SourceFragment / AnswerContext: shared data types
- Retriever / ContextStore: collaborator protocols consumed by the loop
- InMemoryContextStore: process-local answer context store
- HashClusterer / SingleClusterer: query -> cluster mapping
- ParamBandit: Thompson Sampling over retrieval parameter arms
- BanditRetriever: bandit-driven retrieval adapter
- SemanticAnswerCache: source-overlap gated TTL answer cache
- KeywordRetriever: in-memory term-frequency retriever with MMR
"""

from .answer_cache import (
    DEFAULT_CACHE_BOOST_TTL,
    DEFAULT_CACHE_PUNISH_TTL,
    DEFAULT_CACHE_TTL,
    DEFAULT_LOOKUP_TOP_K,
    DEFAULT_MIN_SOURCE_OVERLAP,
    CacheConfig,
    CacheEntry,
    CacheHit,
    CacheStats,
    SemanticAnswerCache,
    jaccard_similarity,
)
from .bandit import (
    DEFAULT_ARMS,
    Arm,
    ArmAssignment,
    ArmChoice,
    BetaPosterior,
    ParamBandit,
)
from .bandit_retriever import BanditRetrieval, BanditRetriever
from .clustering import (
    DEFAULT_CLUSTER,
    DEFAULT_CLUSTER_BUCKETS,
    HashClusterer,
    QueryClusterer,
    SingleClusterer,
    normalize_query,
)
from .context_store import InMemoryContextStore
from .keyword_retriever import KeywordRetriever
from .types import (
    AnswerContext,
    ContextStore,
    RetrievalParams,
    Retriever,
    SourceFragment,
    WritableContextStore,
)

__all__ = [
    # Types
    "RetrievalParams",
    "SourceFragment",
    "AnswerContext",
    "Retriever",
    "ContextStore",
    "WritableContextStore",
    # Context store
    "InMemoryContextStore",
    # Clustering
    "QueryClusterer",
    "HashClusterer",
    "SingleClusterer",
    "normalize_query",
    "DEFAULT_CLUSTER",
    "DEFAULT_CLUSTER_BUCKETS",
    # Bandit
    "Arm",
    "ArmAssignment",
    "ArmChoice",
    "BetaPosterior",
    "ParamBandit",
    "DEFAULT_ARMS",
    "BanditRetriever",
    "BanditRetrieval",
    # Cache
    "CacheConfig",
    "CacheEntry",
    "CacheHit",
    "CacheStats",
    "SemanticAnswerCache",
    "jaccard_similarity",
    "DEFAULT_CACHE_TTL",
    "DEFAULT_CACHE_BOOST_TTL",
    "DEFAULT_CACHE_PUNISH_TTL",
    "DEFAULT_MIN_SOURCE_OVERLAP",
    "DEFAULT_LOOKUP_TOP_K",
    # Retrievers
    "KeywordRetriever",
]
