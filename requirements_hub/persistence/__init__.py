"""MongoClient, RequirementRepository and its backends."""

from requirements_hub.persistence.mongo_client import MongoClient
from requirements_hub.persistence.requirement_repository import (
    InMemoryRequirementRepository,
    MongoRequirementRepository,
    RequirementRepository,
    get_repository,
)

__all__ = [
    "MongoClient",
    "RequirementRepository",
    "InMemoryRequirementRepository",
    "MongoRequirementRepository",
    "get_repository",
]
