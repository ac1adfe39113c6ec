"""Image catalog, relevance search and image intent classification."""

from multilingual_rag.services.images.catalog import ScoredImage, SQLiteImageCatalog
from multilingual_rag.services.images.image_search import (
    ImageRelevanceSearch,
    score_image,
)
from multilingual_rag.services.images.intent import ImageIntentClassifier

__all__ = [
    "ImageIntentClassifier",
    "ImageRelevanceSearch",
    "SQLiteImageCatalog",
    "ScoredImage",
    "score_image",
]
