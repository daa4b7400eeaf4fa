from enum import Enum


class RequirementCategory(str, Enum):
    TECHNICAL = "technical"
    OPERATIONAL = "operational"
    GOVERNANCE = "governance"
    COMPLIANCE = "compliance"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RequirementStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    IMPLEMENTED = "implemented"
    DEPRECATED = "deprecated"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MaturityLevelName(str, Enum):
    INITIAL = "Initial"
    DEVELOPING = "Developing"
    DEFINED = "Defined"
    MANAGED = "Managed"
    OPTIMIZING = "Optimizing"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class LinkMode(str, Enum):
    UNION = "union"
    REPLACE = "replace"


class SliceKey(str, Enum):
    """Storage keys, one per independently persisted slice."""
    COMPANY_PROFILE = "company_profile"
    REQUIREMENTS = "requirements"
    CAPABILITIES = "capabilities"
    SETTINGS = "settings"
    THEME = "theme"
    SIDEBAR_OPEN = "sidebar_open"


def enum_rank(member: Enum) -> int:
    """Declaration index of an enum member; used for ordering buckets and sorts."""
    return list(type(member)).index(member)
