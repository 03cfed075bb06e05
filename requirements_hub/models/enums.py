from enum import Enum


class RequirementType(str, Enum):
    MUST = "Skall"
    SHOULD = "Bör"


class UserStatus(str, Enum):
    OK = "OK"
    IN_DEVELOPMENT = "Under utveckling"
    LATER = "Senare"
    IN_REVIEW = "Granskas"
    APPROVED = "Godkänd"
    REJECTED = "Avvisad"
    NEEDS_CLARIFICATION = "Behöver förtydligande"


class ProgressEventType(str, Enum):
    START = "start"
    INFO = "info"
    PROGRESS = "progress"
    RETRY = "retry"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class SanitationOutcome(str, Enum):
    VALID = "VALID"          # model output honoured every rule
    REPAIRED = "REPAIRED"    # output usable after local fixes
    REJECTED = "REJECTED"    # output unusable, everything ungrouped
