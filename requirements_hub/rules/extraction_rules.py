"""
Extraction Rules Store — loads/saves the requirement-detection thresholds
from MongoDB.

The defaults are tuned to one organization's spreadsheet template; other
templates are expected to override them.
Falls back to the defaults if MongoDB is unavailable or empty.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from requirements_hub.config import get_settings

logger = logging.getLogger(__name__)

RULE_TYPE = "extraction"


class ExtractionRules(BaseModel):
    """Thresholds and word lists used by the RequirementExtractor."""
    min_length: int = 30
    max_length: int = 500
    min_words: int = 5
    max_words: int = 100
    max_sentences: int = 5

    modal_keywords: list[str] = ["ska", "skall", "bör", "shall", "should", "must"]
    must_keywords: list[str] = ["ska", "skall", "must", "shall"]
    should_keywords: list[str] = ["bör", "should", "önskas"]

    deny_phrases: list[str] = [
        "denna flik",
        "följande aktiviteter:",
        "leverantören ska beskriva",
        "leverantören skall beskriva",
        "besvaras i bilaga",
        "informationssäkerhetsklass",
        "säkerhetsskyddsklass",
        "säkerhetsskyddad upphandling",
        "konfidentialitet, riktighet och tillgänglighet",
        "krav på informationssäkerhet gäller",
    ]

    category_column: int = 1  # column B holds section headings in the template
    uncategorized_label: str = "Uncategorized"


class ExtractionRulesStore:
    """
    Loads extraction rules from MongoDB. Falls back to defaults on first run.
    Cached after first load for the lifetime of the store.
    """

    def __init__(self):
        self.settings = get_settings()
        self._db = None
        self._cache: ExtractionRules | None = None

    def _get_db(self):
        if self._db is not None:
            return self._db
        if self.settings.mock_mode:
            return None
        try:
            client = MongoClient(self.settings.mongodb_uri, serverSelectionTimeoutMS=2000)
            self._db = client[self.settings.mongodb_database]
        except PyMongoError as e:
            logger.warning(f"MongoDB not available, using default extraction rules: {e}")
            self._db = None
        return self._db

    def get_rules(self) -> ExtractionRules:
        """Load from MongoDB or return defaults."""
        if self._cache is not None:
            return self._cache

        rules = ExtractionRules(uncategorized_label=self.settings.uncategorized_label)
        db = self._get_db()
        if db is not None:
            try:
                doc = db.rules_config.find_one({"rule_type": RULE_TYPE})
                if doc and "config" in doc:
                    config = {"uncategorized_label": self.settings.uncategorized_label, **doc["config"]}
                    rules = ExtractionRules(**config)
            except PyMongoError as e:
                logger.warning(f"Failed loading extraction rules from MongoDB: {e}")

        self._cache = rules
        return rules

    def update_rules(self, config_dict: dict[str, Any]) -> bool:
        """Admin: validate and save extraction rules in MongoDB."""
        ExtractionRules(**config_dict)
        db = self._get_db()
        if db is None:
            logger.error("Cannot update extraction rules, MongoDB not available")
            return False

        db.rules_config.update_one(
            {"rule_type": RULE_TYPE},
            {"$set": {"rule_type": RULE_TYPE, "config": config_dict}},
            upsert=True,
        )
        # Invalidate cache
        self._cache = None
        logger.info("Updated extraction rules in MongoDB")
        return True
