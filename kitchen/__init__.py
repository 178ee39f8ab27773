"""
kitchen: versioned markdown recipes with AI enrichment and hybrid search.

Quick start:
    from kitchen import Kitchen

    kitchen = Kitchen()
    kitchen.create_recipe("Deploy to Fly", "deploy-fly", "1. fly launch ...")
    kitchen.process_pending()
    for result in kitchen.search("deployment"):
        print(result.short_id, result.similarity)
"""

from .api import Kitchen
from .errors import (
    ConcurrencyConflict,
    DuplicateError,
    KitchenError,
    NoChangeError,
    NotFoundError,
    ProcessingError,
    ValidationError,
)
from .search import SearchResult
from .types import Project, QueueItem, Recipe, RecipeVersion, Tag

__all__ = [
    "Kitchen",
    "KitchenError",
    "ValidationError",
    "NotFoundError",
    "DuplicateError",
    "NoChangeError",
    "ConcurrencyConflict",
    "ProcessingError",
    "SearchResult",
    "Recipe",
    "RecipeVersion",
    "QueueItem",
    "Tag",
    "Project",
]
