from requirements_hub.rules.extraction_rules import ExtractionRules, ExtractionRulesStore

__all__ = ["ExtractionRules", "ExtractionRulesStore"]
