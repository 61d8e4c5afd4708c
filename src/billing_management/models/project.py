from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from ..timeutils import now_utc
from .base import DBSerializableModel


class Industry(str, Enum):
    SAAS = "saas"
    ECOMMERCE = "ecommerce"
    FINTECH = "fintech"
    HEALTHTECH = "healthtech"
    EDTECH = "edtech"
    MARKETPLACE = "marketplace"
    SOCIAL = "social"
    ENTERPRISE = "enterprise"
    GAMING = "gaming"
    OTHER = "other"


class TeamSize(str, Enum):
    SOLO = "solo"
    SMALL = "2-5"
    MEDIUM = "6-10"
    LARGE = "11-25"
    XLARGE = "25+"


class PrimaryObjective(str, Enum):
    MVP = "mvp"
    FUNDING = "funding"
    SCALE = "scale"
    COFOUNDER = "cofounder"
    VALIDATE = "validate"


class Timeline(str, Enum):
    UP_TO_3 = "1-3"
    UP_TO_6 = "3-6"
    UP_TO_12 = "6-12"
    OVER_12 = "12+"


class BudgetRange(str, Enum):
    UP_TO_5K = "0-5k"
    UP_TO_15K = "5k-15k"
    UP_TO_50K = "15k-50k"
    OVER_50K = "50k+"


class TechnicalLevel(str, Enum):
    NON_TECHNICAL = "non-technical"
    SOME = "some"
    TECHNICAL = "technical"
    EXPERT = "expert"


class TechStack(str, Enum):
    REACT_NODE = "react-node"
    PYTHON_DJANGO = "python-django"
    MOBILE_FIRST = "mobile-first"
    WORDPRESS = "wordpress"
    CUSTOM = "custom"


class ProjectStatus(str, Enum):
    ACTIVE = "active"


class Project(DBSerializableModel):
    """
    A user-owned business-plan record.

    `base_documents` is the plan's document quota captured when the project
    was created (None = unlimited); later plan changes do not touch it.
    """

    collection_name: ClassVar[str] = "projects"

    id: Optional[str] = Field(default=None)
    user_id: str
    project_name: str = Field(min_length=1)
    industry: Industry
    team_size: TeamSize
    primary_objective: PrimaryObjective
    timeline: Timeline
    budget_range: BudgetRange
    technical_level: TechnicalLevel
    need_cofounder: bool = False
    preferred_tech_stack: TechStack
    project_description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    onboarding_completed: bool = True
    base_documents: Optional[int] = Field(
        default=None,
        description="Document quota snapshot from the plan at creation; null means unlimited.",
    )
    used_documents: int = 0
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
