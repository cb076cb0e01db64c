from enum import Enum


class Origin(str, Enum):
    structured = "structured"
    semantic = "semantic"
    keyword = "keyword"
    fallback = "fallback"


ORIGIN_PRIORITY = {
    Origin.structured: 0,
    Origin.semantic: 1,
    Origin.keyword: 2,
    Origin.fallback: 3,
}


class SortOption(str, Enum):
    relevance = "relevance"
    price_asc = "price_asc"
    price_desc = "price_desc"
    distance = "distance"
    newest = "newest"


class SearchMethod(str, Enum):
    hybrid = "hybrid"
    structured = "structured"
    semantic = "semantic"
    keyword = "keyword"
    fallback = "fallback"
    empty = "empty"


class ScoringStatus(str, Enum):
    scored = "scored"
    cached = "cached"
    failed = "failed"
    skipped = "skipped"


class BreakerState(str, Enum):
    closed = "closed"
    open = "open"
    half_open = "half_open"


class ExperimentStatus(str, Enum):
    draft = "draft"
    active = "active"
    stopped = "stopped"


class MetricType(str, Enum):
    conversion = "conversion"
    engagement = "engagement"
    revenue = "revenue"
    custom = "custom"


class UserType(str, Enum):
    student = "student"
    owner = "owner"
    all = "all"


class FeedbackType(str, Enum):
    helpful = "helpful"
    unhelpful = "unhelpful"
    neutral = "neutral"
    saved = "saved"
    contacted = "contacted"
