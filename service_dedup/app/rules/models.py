"""
Rule and match data models for the Duplicate Detection Service.
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from shared.errors import DedupException


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchLogic(str, Enum):
    """How the field groups of a rule combine."""
    ANY = "ANY"
    ALL = "ALL"

    @classmethod
    def _missing_(cls, value):
        # Rules stored before the rename use OR/AND
        aliases = {"OR": cls.ANY, "AND": cls.ALL}
        if isinstance(value, str):
            upper = value.upper()
            if upper in aliases:
                return aliases[upper]
            if upper in cls.__members__:
                return cls[upper]
        return None


class UserAction(str, Enum):
    """What a human chose after being shown a potential duplicate."""
    CREATED_ANYWAY = "created_anyway"
    VIEWED = "viewed"
    CANCELLED = "cancelled"


@dataclass
class MatchRule:
    """Administrator-configured duplicate rule for one entity type."""
    rule_id: str
    tenant_id: str
    entity_type: str
    name: str
    field_groups: List[List[str]] = field(default_factory=list)
    match_logic: MatchLogic = MatchLogic.ANY
    description: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_well_formed(self) -> bool:
        """True when there is at least one group and no group is empty."""
        return bool(self.field_groups) and all(len(group) > 0 for group in self.field_groups)

    def field_paths(self) -> List[str]:
        """Every field path across every group, in order, without repeats."""
        seen: List[str] = []
        for group in self.field_groups:
            for path in group:
                if path not in seen:
                    seen.append(path)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "name": self.name,
            "description": self.description,
            "field_groups": [list(group) for group in self.field_groups],
            "match_logic": self.match_logic.value,
            "is_active": self.is_active,
            "priority": self.priority,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchRule":
        return cls(
            rule_id=data["rule_id"],
            tenant_id=data["tenant_id"],
            entity_type=data["entity_type"],
            name=data["name"],
            description=data.get("description"),
            field_groups=[list(group) for group in data.get("field_groups") or []],
            match_logic=MatchLogic(data.get("match_logic", MatchLogic.ANY.value)),
            is_active=data.get("is_active", True),
            priority=data.get("priority", 0),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return utcnow()


@dataclass
class DuplicateMatch:
    """One existing record flagged as a likely duplicate of the candidate."""
    matched_record_id: str
    matched_record_snapshot: Dict[str, Any]
    matched_fields: Dict[str, Any] = field(default_factory=dict)
    candidate_record_id: Optional[str] = None
    # Exact-match semantics only
    confidence_score: float = 1.0


@dataclass
class EvaluationResult:
    """Result of a duplicate check."""
    has_duplicates: bool
    matches: List[DuplicateMatch] = field(default_factory=list)
    deciding_rule_id: Optional[str] = None
    rules_evaluated: int = 0
    evaluation_time_ms: float = 0.0
    failed_open: bool = False

    @classmethod
    def no_duplicates(cls, **kwargs) -> "EvaluationResult":
        return cls(has_duplicates=False, matches=[], **kwargs)


@dataclass
class CheckOutcome:
    """Either an evaluation result or the error that prevented one.

    The engine never decides to fail open on its own; callers inspect
    ``error`` and call :meth:`result_or_fail_open` when they choose to
    let record creation proceed.
    """
    result: Optional[EvaluationResult] = None
    error: Optional[DedupException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def result_or_fail_open(self) -> EvaluationResult:
        if self.ok and self.result is not None:
            return self.result
        return EvaluationResult.no_duplicates(failed_open=True)


@dataclass
class MatchLog:
    """Append-only audit entry for a human decision on a reported match."""
    log_id: str
    tenant_id: str
    entity_type: str
    candidate_record_id: str
    matched_record_id: str
    matched_fields: Dict[str, Any] = field(default_factory=dict)
    rule_id: Optional[str] = None
    confidence_score: float = 1.0
    user_id: Optional[str] = None
    user_action: Optional[UserAction] = None
    actioned_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


class DuplicateCheckRequest(BaseModel):
    """Request model for a duplicate check."""
    tenant_id: str = Field(..., description="Tenant ID")
    entity_type: str = Field(..., description="Entity collection, e.g. leads")
    candidate: Dict[str, Any] = Field(default_factory=dict, description="Fields of the record about to be created")
    candidate_record_id: Optional[str] = Field(None, description="Id of the record being created, if already assigned")


class DuplicateMatchResponse(BaseModel):
    """One reported match, with display context."""
    matched_record_id: str
    display_name: str
    summary: Dict[str, Any] = Field(default_factory=dict)
    matched_fields: Dict[str, Any] = Field(default_factory=dict)
    record: Dict[str, Any] = Field(default_factory=dict)
    confidence_score: float = 1.0


class DuplicateCheckResponse(BaseModel):
    """Response model for a duplicate check."""
    has_duplicates: bool = Field(..., description="Whether any duplicate was found")
    matches: List[DuplicateMatchResponse] = Field(default_factory=list)
    deciding_rule_id: Optional[str] = Field(None, description="Rule that produced the matches")
    failed_open: bool = Field(False, description="True when the check could not run and creation may proceed")


class DecisionRequest(BaseModel):
    """Request model for recording a user decision on a reported match."""
    tenant_id: str = Field(..., description="Tenant ID")
    entity_type: str = Field(..., description="Entity collection")
    candidate_record_id: str = Field(..., description="Record the user was creating")
    matched_record_id: str = Field(..., description="Existing record shown as a duplicate")
    matched_fields: Dict[str, Any] = Field(default_factory=dict)
    rule_id: Optional[str] = Field(None, description="Deciding rule")
    user_action: Optional[UserAction] = Field(None, description="created_anyway, viewed or cancelled")
    user_id: Optional[str] = Field(None, description="User who decided")


class RuleCreateRequest(BaseModel):
    """Request model for creating a rule."""
    tenant_id: str = Field(..., description="Tenant ID")
    entity_type: str = Field(..., description="Entity collection")
    name: str = Field(..., description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    field_groups: List[List[str]] = Field(..., description="Groups of field paths")
    match_logic: MatchLogic = Field(MatchLogic.ANY, description="ANY or ALL")
    priority: int = Field(0, description="Higher evaluates first")
    is_active: bool = Field(True, description="Whether the rule is evaluated")


class RuleUpdateRequest(BaseModel):
    """Request model for updating a rule."""
    name: Optional[str] = Field(None, description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    field_groups: Optional[List[List[str]]] = Field(None, description="Groups of field paths")
    match_logic: Optional[MatchLogic] = Field(None, description="ANY or ALL")
    priority: Optional[int] = Field(None, description="Higher evaluates first")
    is_active: Optional[bool] = Field(None, description="Whether the rule is evaluated")


class RuleResponse(BaseModel):
    """Response model for rule operations."""
    rule_id: str
    tenant_id: str
    entity_type: str
    name: str
    description: Optional[str]
    field_groups: List[List[str]]
    match_logic: MatchLogic
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: MatchRule) -> "RuleResponse":
        return cls(
            rule_id=rule.rule_id,
            tenant_id=rule.tenant_id,
            entity_type=rule.entity_type,
            name=rule.name,
            description=rule.description,
            field_groups=rule.field_groups,
            match_logic=rule.match_logic,
            priority=rule.priority,
            is_active=rule.is_active,
            created_at=rule.created_at,
            updated_at=rule.updated_at
        )


class RuleListResponse(BaseModel):
    """Response model for rule list."""
    rules: List[RuleResponse]
    total: int
    page: int
    limit: int


class SeedRequest(BaseModel):
    """Request model for seeding a tenant's default rules."""
    tenant_id: str = Field(..., description="Tenant ID")
