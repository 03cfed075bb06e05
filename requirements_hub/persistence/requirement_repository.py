"""
Requirement Repository — the read/write contract the import, grouping and
comparison services need from storage, with an in-memory backend (mock
mode and tests) and a MongoDB backend.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Iterable, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from requirements_hub.exceptions import PersistenceError
from requirements_hub.models.enums import RequirementType
from requirements_hub.models.schemas import (
    CategoryMapping,
    NamedCount,
    Requirement,
    RequirementFilter,
    RequirementStatistics,
)
from requirements_hub.persistence.mongo_client import MongoClient

logger = logging.getLogger(__name__)

_GROUP_FIELDS_CLEARED = {
    "group_id": None,
    "group_representative": False,
    "similarity_score": None,
    "category_label": None,
}


# ── Filtering / statistics over loaded records ──────────


def matches_filter(req: Requirement, filters: RequirementFilter) -> bool:
    if filters.search and filters.search.lower() not in req.text.lower():
        return False
    if filters.types and req.requirement_type not in filters.types:
        return False
    if filters.organizations and not set(filters.organizations) & set(req.organizations):
        return False
    if filters.categories and not set(filters.categories) & set(req.categories):
        return False
    if filters.dates and not set(filters.dates) & set(req.dates):
        return False
    if filters.statuses and req.user_status not in filters.statuses:
        return False
    if filters.grouped_only and not req.group_id:
        return False
    if filters.only_new and not req.is_new:
        return False
    return True


def _ranked(counts: Counter) -> list[NamedCount]:
    """Most frequent first, ties by name."""
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [NamedCount(name=name, count=count) for name, count in ordered]


def compute_statistics(requirements: Iterable[Requirement]) -> RequirementStatistics:
    reqs = list(requirements)
    categories: Counter = Counter(c for r in reqs for c in r.categories if c)
    organizations: Counter = Counter(o for r in reqs for o in r.organizations if o)
    statuses: Counter = Counter(r.user_status.value for r in reqs)
    return RequirementStatistics(
        total_requirements=len(reqs),
        must_requirements=sum(1 for r in reqs if r.requirement_type == RequirementType.MUST),
        should_requirements=sum(1 for r in reqs if r.requirement_type == RequirementType.SHOULD),
        new_requirements=sum(1 for r in reqs if r.is_new),
        organizations=len(organizations),
        groups=len({r.group_id for r in reqs if r.group_id}),
        categories=_ranked(categories),
        organization_stats=_ranked(organizations),
        status_stats=_ranked(statuses),
    )


class RequirementRepository(ABC):
    """Storage contract for requirements and category mappings."""

    # ── Requirements ─────────────────────────────────────

    @abstractmethod
    def get_requirement(self, requirement_id: str) -> Optional[Requirement]:
        ...

    @abstractmethod
    def get_all_requirements(self, filters: Optional[RequirementFilter] = None) -> list[Requirement]:
        ...

    def get_requirements_for_grouping(self) -> list[Requirement]:
        """Every persisted requirement; grouping always runs on the full corpus."""
        return self.get_all_requirements()

    @abstractmethod
    def get_statistics(self) -> RequirementStatistics:
        ...

    @abstractmethod
    def create_many_requirements(self, requirements: Iterable[Requirement]) -> list[Requirement]:
        ...

    @abstractmethod
    def update_requirement(self, requirement_id: str, updates: dict[str, Any]) -> Optional[Requirement]:
        ...

    # ── Grouping fields ──────────────────────────────────

    @abstractmethod
    def update_requirement_group(
        self,
        requirement_id: str,
        group_id: str,
        is_representative: bool,
        similarity_score: Optional[int] = None,
        category: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def clear_all_groupings(self) -> None:
        ...

    @abstractmethod
    def clear_requirement_grouping(self, requirement_id: str) -> None:
        ...

    # ── Category mappings ────────────────────────────────

    @abstractmethod
    def get_all_category_mappings(self) -> list[CategoryMapping]:
        ...

    @abstractmethod
    def create_category_mapping(self, source_category: str, target_category: str) -> CategoryMapping:
        """
        Insert ``source → target`` unless *source* is already mapped.
        Returns the mapping actually stored, which may carry an older target.
        """
        ...


# ── In-memory backend ────────────────────────────────────


class InMemoryRequirementRepository(RequirementRepository):
    """Dict-backed repository used in mock mode and by the tests."""

    def __init__(self, requirements: Iterable[Requirement] = (), mappings: Iterable[CategoryMapping] = ()):
        self._requirements: dict[str, Requirement] = {}
        self._mappings: dict[str, CategoryMapping] = {}
        for req in requirements:
            self._requirements[req.id] = req.model_copy(deep=True)
        for mapping in mappings:
            self._mappings[mapping.source_category] = mapping.model_copy()

    def get_requirement(self, requirement_id: str) -> Optional[Requirement]:
        req = self._requirements.get(requirement_id)
        return req.model_copy(deep=True) if req else None

    def get_all_requirements(self, filters: Optional[RequirementFilter] = None) -> list[Requirement]:
        return [
            r.model_copy(deep=True)
            for r in self._requirements.values()
            if filters is None or matches_filter(r, filters)
        ]

    def get_statistics(self) -> RequirementStatistics:
        return compute_statistics(self._requirements.values())

    def create_many_requirements(self, requirements: Iterable[Requirement]) -> list[Requirement]:
        created: list[Requirement] = []
        for req in requirements:
            if req.id in self._requirements:
                raise PersistenceError(f"Requirement {req.id} already exists")
            self._requirements[req.id] = req.model_copy(deep=True)
            created.append(req.model_copy(deep=True))
        logger.info(f"Stored {len(created)} requirements (in-memory)")
        return created

    def update_requirement(self, requirement_id: str, updates: dict[str, Any]) -> Optional[Requirement]:
        req = self._requirements.get(requirement_id)
        if req is None:
            return None
        merged = req.model_dump()
        merged.update(updates)
        self._requirements[requirement_id] = Requirement(**merged)
        return self._requirements[requirement_id].model_copy(deep=True)

    def update_requirement_group(
        self,
        requirement_id: str,
        group_id: str,
        is_representative: bool,
        similarity_score: Optional[int] = None,
        category: Optional[str] = None,
    ) -> None:
        self.update_requirement(requirement_id, {
            "group_id": group_id,
            "group_representative": is_representative,
            "similarity_score": similarity_score,
            "category_label": category,
        })

    def clear_all_groupings(self) -> None:
        for requirement_id in list(self._requirements):
            self.update_requirement(requirement_id, dict(_GROUP_FIELDS_CLEARED))

    def clear_requirement_grouping(self, requirement_id: str) -> None:
        self.update_requirement(requirement_id, dict(_GROUP_FIELDS_CLEARED))

    def get_all_category_mappings(self) -> list[CategoryMapping]:
        return [m.model_copy() for m in self._mappings.values()]

    def create_category_mapping(self, source_category: str, target_category: str) -> CategoryMapping:
        existing = self._mappings.get(source_category)
        if existing is not None:
            return existing.model_copy()
        mapping = CategoryMapping(source_category=source_category, target_category=target_category)
        self._mappings[source_category] = mapping
        return mapping.model_copy()


# ── MongoDB backend ──────────────────────────────────────


class MongoRequirementRepository(RequirementRepository):
    """
    pymongo-backed repository.
    Collections: ``requirements`` (unique ``id``) and ``category_mappings``
    (unique ``source_category``).
    """

    def __init__(self, client: MongoClient | None = None):
        self._client = client or MongoClient()
        self._indexes_ready = False

    # ── Helpers ──────────────────────────────────────────

    def _db(self):
        db = self._client.get_database()
        if not self._indexes_ready:
            try:
                db.requirements.create_index([("id", ASCENDING)], unique=True)
                db.category_mappings.create_index([("source_category", ASCENDING)], unique=True)
            except PyMongoError as exc:
                raise PersistenceError(f"Cannot prepare MongoDB indexes: {exc}") from exc
            self._indexes_ready = True
        return db

    @staticmethod
    def _to_requirement(doc: dict[str, Any]) -> Requirement:
        doc = dict(doc)
        doc.pop("_id", None)
        return Requirement(**doc)

    # ── Requirements ─────────────────────────────────────

    def get_requirement(self, requirement_id: str) -> Optional[Requirement]:
        try:
            doc = self._db().requirements.find_one({"id": requirement_id})
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot read requirement {requirement_id}: {exc}") from exc
        return self._to_requirement(doc) if doc else None

    @staticmethod
    def build_query(filters: Optional[RequirementFilter]) -> dict[str, Any]:
        """Translate a RequirementFilter into a MongoDB query document."""
        if filters is None:
            return {}
        conditions: list[dict[str, Any]] = []
        if filters.search:
            conditions.append({"text": {"$regex": re.escape(filters.search), "$options": "i"}})
        if filters.types:
            conditions.append({"requirement_type": {"$in": [t.value for t in filters.types]}})
        # $in on an array field matches when any element is listed
        for field, values in (
            ("organizations", filters.organizations),
            ("categories", filters.categories),
            ("dates", filters.dates),
        ):
            if values:
                conditions.append({field: {"$in": list(values)}})
        if filters.statuses:
            conditions.append({"user_status": {"$in": [s.value for s in filters.statuses]}})
        if filters.grouped_only:
            conditions.append({"group_id": {"$ne": None}})
        if filters.only_new:
            conditions.append({"is_new": True})
        return {"$and": conditions} if conditions else {}

    def get_all_requirements(self, filters: Optional[RequirementFilter] = None) -> list[Requirement]:
        try:
            docs = list(self._db().requirements.find(self.build_query(filters)))
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot read requirements: {exc}") from exc
        return [self._to_requirement(d) for d in docs]

    @staticmethod
    def _count_pipeline(field: str, unwind: bool) -> list[dict[str, Any]]:
        stages: list[dict[str, Any]] = [{"$unwind": f"${field}"}] if unwind else []
        return stages + [
            {"$match": {field: {"$nin": [None, ""]}}},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
            {"$sort": {"count": -1, "_id": 1}},
        ]

    def get_statistics(self) -> RequirementStatistics:
        try:
            col = self._db().requirements
            total = col.count_documents({})
            must = col.count_documents({"requirement_type": RequirementType.MUST.value})
            should = col.count_documents({"requirement_type": RequirementType.SHOULD.value})
            new = col.count_documents({"is_new": True})
            organizations = [o for o in col.distinct("organizations") if o]
            groups = [g for g in col.distinct("group_id") if g]
            ranked = {
                field: [
                    NamedCount(name=str(doc["_id"]), count=doc["count"])
                    for doc in col.aggregate(self._count_pipeline(field, unwind))
                ]
                for field, unwind in (
                    ("categories", True),
                    ("organizations", True),
                    ("user_status", False),
                )
            }
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot compute requirement statistics: {exc}") from exc
        return RequirementStatistics(
            total_requirements=total,
            must_requirements=must,
            should_requirements=should,
            new_requirements=new,
            organizations=len(organizations),
            groups=len(groups),
            categories=ranked["categories"],
            organization_stats=ranked["organizations"],
            status_stats=ranked["user_status"],
        )

    def create_many_requirements(self, requirements: Iterable[Requirement]) -> list[Requirement]:
        reqs = list(requirements)
        if not reqs:
            return []
        try:
            self._db().requirements.insert_many([r.model_dump(mode="json") for r in reqs])
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot store requirements: {exc}") from exc
        logger.info(f"Stored {len(reqs)} requirements in MongoDB")
        return reqs

    def update_requirement(self, requirement_id: str, updates: dict[str, Any]) -> Optional[Requirement]:
        payload = Requirement.model_validate(
            {"id": requirement_id, "text": "", **updates}
        ).model_dump(mode="json", include=set(updates))
        try:
            doc = self._db().requirements.find_one_and_update(
                {"id": requirement_id},
                {"$set": payload},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot update requirement {requirement_id}: {exc}") from exc
        return self._to_requirement(doc) if doc else None

    # ── Grouping fields ──────────────────────────────────

    def update_requirement_group(
        self,
        requirement_id: str,
        group_id: str,
        is_representative: bool,
        similarity_score: Optional[int] = None,
        category: Optional[str] = None,
    ) -> None:
        try:
            self._db().requirements.update_one(
                {"id": requirement_id},
                {"$set": {
                    "group_id": group_id,
                    "group_representative": is_representative,
                    "similarity_score": similarity_score,
                    "category_label": category,
                }},
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot write group {group_id} for {requirement_id}: {exc}") from exc

    def clear_all_groupings(self) -> None:
        try:
            result = self._db().requirements.update_many({}, {"$set": dict(_GROUP_FIELDS_CLEARED)})
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot clear groupings: {exc}") from exc
        logger.info(f"Cleared grouping fields on {result.modified_count} requirements")

    def clear_requirement_grouping(self, requirement_id: str) -> None:
        try:
            self._db().requirements.update_one(
                {"id": requirement_id}, {"$set": dict(_GROUP_FIELDS_CLEARED)}
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot clear grouping for {requirement_id}: {exc}") from exc

    # ── Category mappings ────────────────────────────────

    def get_all_category_mappings(self) -> list[CategoryMapping]:
        try:
            docs = list(self._db().category_mappings.find({}, {"_id": 0}))
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot read category mappings: {exc}") from exc
        return [CategoryMapping(**d) for d in docs]

    def create_category_mapping(self, source_category: str, target_category: str) -> CategoryMapping:
        collection = self._db().category_mappings
        try:
            doc = collection.find_one_and_update(
                {"source_category": source_category},
                {"$setOnInsert": {
                    "source_category": source_category,
                    "target_category": target_category,
                }},
                upsert=True,
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # lost a concurrent upsert race; the winner's row is authoritative
            doc = collection.find_one({"source_category": source_category}, {"_id": 0})
        except PyMongoError as exc:
            raise PersistenceError(f"Cannot store category mapping '{source_category}': {exc}") from exc
        return CategoryMapping(**doc)


def get_repository(settings=None) -> RequirementRepository:
    """Repository for the configured mode (in-memory in mock mode)."""
    from requirements_hub.config import get_settings

    settings = settings or get_settings()
    if settings.mock_mode:
        logger.info("[MOCK] Using in-memory requirement repository")
        return InMemoryRequirementRepository()
    return MongoRequirementRepository()
