"""Extraction, category normalization, grouping, comparison and import services."""

from requirements_hub.services.assistant_service import AssistantService
from requirements_hub.services.category_normalizer import CategoryCache, CategoryNormalizer
from requirements_hub.services.comparison_service import ComparisonEngine
from requirements_hub.services.extraction_service import RequirementExtractor
from requirements_hub.services.grouping_service import GroupingEngine, commit_grouping, run_grouping
from requirements_hub.services.import_service import ImportService
from requirements_hub.services.progress import ProgressBus
from requirements_hub.services.retry_policy import RetryPolicy

__all__ = [
    "AssistantService",
    "CategoryCache",
    "CategoryNormalizer",
    "ComparisonEngine",
    "RequirementExtractor",
    "GroupingEngine",
    "commit_grouping",
    "run_grouping",
    "ImportService",
    "ProgressBus",
    "RetryPolicy",
]
