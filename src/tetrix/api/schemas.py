from typing import Any, Dict, List, Optional
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator

from tetrix.scheduling.models import (
    AllocationEntry,
    Conflict,
    ConflictType,
    DistributionMode,
    DistributionOutcome,
    DistributionResult,
    DistributionSlice,
    EntryType,
    ImpactBand,
    ImpactScore,
    Priority,
    ReassignmentCandidate,
    Suggestion,
    SuggestionType,
    Task,
    TimeRange,
    format_hour,
    parse_hour,
)


def _hour(value: Optional[str]) -> Optional[float]:
    return parse_hour(value) if value is not None else None


def _clock(value: Optional[float]) -> Optional[str]:
    return format_hour(value) if value is not None else None


class _TimeOfDayModel(BaseModel):
    """Accepts HH:MM (or 10h30) strings for start/end."""

    @field_validator("start", "end", check_fields=False)
    @classmethod
    def validate_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return format_hour(parse_hour(value))

# --- Distribution ---

class SliceSchema(_TimeOfDayModel):
    date: date
    hours: float = Field(..., ge=0)
    start: Optional[str] = Field(None, description="HH:MM")
    end: Optional[str] = Field(None, description="HH:MM")

    def to_slice(self) -> DistributionSlice:
        return DistributionSlice(self.date, self.hours, _hour(self.start), _hour(self.end))

    @classmethod
    def from_slice(cls, piece: DistributionSlice) -> "SliceSchema":
        return cls(date=piece.date, hours=piece.hours, start=_clock(piece.start), end=_clock(piece.end))

class TaskBase(BaseModel):
    translator_id: str
    total_hours: float = Field(..., description="Hours to distribute")
    due_at: datetime
    project_number: str = ""
    priority: Priority = Priority.REGULAR
    mode: DistributionMode = DistributionMode.JUST_IN_TIME
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    language_pair: Optional[str] = None
    client: Optional[str] = None
    domain: Optional[str] = None
    morning_delivery: bool = False

    def to_task(self, task_id: str, version: int = 1) -> Task:
        return Task(
            id=task_id,
            translator_id=self.translator_id,
            total_hours=self.total_hours,
            due_at=self.due_at,
            project_number=self.project_number,
            priority=self.priority,
            mode=self.mode,
            window_start=self.window_start,
            window_end=self.window_end,
            language_pair=self.language_pair,
            client=self.client,
            domain=self.domain,
            morning_delivery=self.morning_delivery,
            version=version,
        )

class PreviewRequest(TaskBase):
    id: Optional[str] = Field(None, description="Existing task id; its current rows are ignored")
    manual_allocation: Optional[List[SliceSchema]] = None

class DistributionResponse(BaseModel):
    mode: DistributionMode
    outcome: DistributionOutcome
    requested_hours: float
    allocated_hours: float
    unallocated_hours: float = 0.0
    slices: List[SliceSchema]
    past_dates: List[date] = Field(default_factory=list)
    overflow_dates: List[date] = Field(default_factory=list)
    exhausted_on: Optional[date] = None
    warning: Optional[str] = None
    message: str = ""

    @classmethod
    def from_result(cls, result: DistributionResult) -> "DistributionResponse":
        return cls(
            mode=result.mode,
            outcome=result.outcome,
            requested_hours=result.requested_hours,
            allocated_hours=result.allocated_hours,
            unallocated_hours=result.unallocated_hours,
            slices=[SliceSchema.from_slice(s) for s in result.slices],
            past_dates=result.past_dates,
            overflow_dates=result.overflow_dates,
            exhausted_on=result.exhausted_on,
            warning=result.warning,
            message=result.message,
        )

# --- Ledger ---

class EntryResponse(BaseModel):
    id: str
    date: date
    translator_id: str
    hours: float
    entry_type: EntryType
    start: Optional[str] = None
    end: Optional[str] = None
    task_id: Optional[str] = None
    reason: Optional[str] = None
    forced: bool = False

    @classmethod
    def from_entry(cls, entry: AllocationEntry) -> "EntryResponse":
        return cls(
            id=entry.id,
            date=entry.date,
            translator_id=entry.translator_id,
            hours=entry.hours,
            entry_type=entry.entry_type,
            start=_clock(entry.start),
            end=_clock(entry.end),
            task_id=entry.task_id,
            reason=entry.reason,
            forced=entry.forced,
        )

class LedgerDayResponse(BaseModel):
    date: date
    capacity: float
    booked: float
    available: float
    entries: List[EntryResponse]

class LedgerResponse(BaseModel):
    translator_id: str
    days: List[LedgerDayResponse]

# --- Conflicts ---

class ConflictSchema(_TimeOfDayModel):
    id: str
    conflict_type: ConflictType
    translator_id: str
    date: date
    hours_involved: float
    explanation: str = ""
    start: Optional[str] = None
    end: Optional[str] = None
    entry_id: Optional[str] = None
    task_id: Optional[str] = None
    related_entry_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_conflict(cls, conflict: Conflict) -> "ConflictSchema":
        span = conflict.time_range
        return cls(
            id=conflict.id,
            conflict_type=conflict.conflict_type,
            translator_id=conflict.translator_id,
            date=conflict.date,
            hours_involved=conflict.hours_involved,
            explanation=conflict.explanation,
            start=_clock(span.start) if span else None,
            end=_clock(span.end) if span else None,
            entry_id=conflict.entry_id,
            task_id=conflict.task_id,
            related_entry_id=conflict.related_entry_id,
            context=conflict.context,
        )

    def to_conflict(self) -> Conflict:
        span = None
        if self.start is not None and self.end is not None:
            span = TimeRange(parse_hour(self.start), parse_hour(self.end))
        return Conflict(
            id=self.id,
            conflict_type=self.conflict_type,
            translator_id=self.translator_id,
            date=self.date,
            hours_involved=self.hours_involved,
            explanation=self.explanation,
            time_range=span,
            entry_id=self.entry_id,
            task_id=self.task_id,
            related_entry_id=self.related_entry_id,
            context=self.context,
        )

# --- Suggestions ---

class ImpactSchema(BaseModel):
    total: int = Field(..., ge=0, le=100)
    band: ImpactBand
    breakdown: Dict[str, float] = Field(default_factory=dict)
    justification: str = ""

class CandidateSchema(BaseModel):
    translator_id: str
    translator_name: str
    available_hours: float
    can_complete_before_due: bool
    score: float
    proposed_slices: List[SliceSchema] = Field(default_factory=list)

class SuggestionSchema(BaseModel):
    id: str
    suggestion_type: SuggestionType
    conflict_ids: List[str] = Field(default_factory=list)
    task_id: str
    current_translator_id: str
    target_translator_id: Optional[str] = None
    impact: ImpactSchema
    description: str = ""
    proposed_slices: List[SliceSchema] = Field(default_factory=list)
    candidates: List[CandidateSchema] = Field(default_factory=list)
    displaced_hours: float = 0.0
    missing_hours: float = 0.0
    created_at: Optional[datetime] = None

    @classmethod
    def from_suggestion(cls, suggestion: Suggestion) -> "SuggestionSchema":
        return cls(
            id=suggestion.id,
            suggestion_type=suggestion.suggestion_type,
            conflict_ids=suggestion.conflict_ids,
            task_id=suggestion.task_id,
            current_translator_id=suggestion.current_translator_id,
            target_translator_id=suggestion.target_translator_id,
            impact=ImpactSchema(
                total=suggestion.impact.total,
                band=suggestion.impact.band,
                breakdown=suggestion.impact.breakdown,
                justification=suggestion.impact.justification,
            ),
            description=suggestion.description,
            proposed_slices=[SliceSchema.from_slice(s) for s in suggestion.proposed_slices],
            candidates=[
                CandidateSchema(
                    translator_id=c.translator_id,
                    translator_name=c.translator_name,
                    available_hours=c.available_hours,
                    can_complete_before_due=c.can_complete_before_due,
                    score=c.score,
                    proposed_slices=[SliceSchema.from_slice(s) for s in c.proposed_slices],
                )
                for c in suggestion.candidates
            ],
            displaced_hours=suggestion.displaced_hours,
            missing_hours=suggestion.missing_hours,
            created_at=suggestion.created_at,
        )

    def to_suggestion(self) -> Suggestion:
        suggestion = Suggestion(
            suggestion_type=self.suggestion_type,
            conflict_ids=list(self.conflict_ids),
            task_id=self.task_id,
            current_translator_id=self.current_translator_id,
            target_translator_id=self.target_translator_id,
            impact=ImpactScore(
                total=self.impact.total,
                band=self.impact.band,
                breakdown=dict(self.impact.breakdown),
                justification=self.impact.justification,
            ),
            description=self.description,
            proposed_slices=[s.to_slice() for s in self.proposed_slices],
            candidates=[
                ReassignmentCandidate(
                    translator_id=c.translator_id,
                    translator_name=c.translator_name,
                    available_hours=c.available_hours,
                    can_complete_before_due=c.can_complete_before_due,
                    score=c.score,
                    proposed_slices=[s.to_slice() for s in c.proposed_slices],
                )
                for c in self.candidates
            ],
            displaced_hours=self.displaced_hours,
            missing_hours=self.missing_hours,
            id=self.id,
        )
        if self.created_at is not None:
            suggestion.created_at = self.created_at
        return suggestion

class SuggestRequest(BaseModel):
    conflicts: List[ConflictSchema]
    candidate_ids: Optional[List[str]] = Field(None, description="Restrict reassignment to these translators")

class SuggestResponse(BaseModel):
    suggestions: List[SuggestionSchema]

class ApplySuggestionRequest(BaseModel):
    suggestion: SuggestionSchema
    expected_version: Optional[int] = None
    force: bool = False

class ConflictListResponse(BaseModel):
    conflicts: List[ConflictSchema]

class AllocationReportResponse(BaseModel):
    entry: EntryResponse
    conflicts: List[ConflictSchema]
    suggestions: List[SuggestionSchema]

# --- Tasks ---

class TaskCreate(TaskBase):
    id: Optional[str] = None
    auto_distribute: bool = Field(True, description="Let the engine compute the allocation")
    manual_allocation: Optional[List[SliceSchema]] = None
    force: bool = Field(False, description="Accept manual lines that overbook a day")
    confirm_past_dates: bool = False

class TaskUpdate(TaskBase):
    expected_version: int
    auto_distribute: bool = True
    manual_allocation: Optional[List[SliceSchema]] = None
    force: bool = False
    confirm_past_dates: bool = False

class TaskResponse(BaseModel):
    id: str
    translator_id: str
    total_hours: float
    due_at: datetime
    project_number: str
    priority: Priority
    mode: DistributionMode
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    language_pair: Optional[str] = None
    client: Optional[str] = None
    domain: Optional[str] = None
    morning_delivery: bool = False
    version: int

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            translator_id=task.translator_id,
            total_hours=task.total_hours,
            due_at=task.due_at,
            project_number=task.project_number,
            priority=task.priority,
            mode=task.mode,
            window_start=task.window_start,
            window_end=task.window_end,
            language_pair=task.language_pair,
            client=task.client,
            domain=task.domain,
            morning_delivery=task.morning_delivery,
            version=task.version,
        )

class TaskWriteResponse(BaseModel):
    status: str
    task: TaskResponse
    distribution: DistributionResponse
    entries: List[EntryResponse]
    conflicts: List[ConflictSchema]
    requires_confirmation: bool = False

# --- Blocks ---

class BlockCreate(_TimeOfDayModel):
    translator_id: str
    date: date
    start: str = Field(..., description="HH:MM")
    end: str = Field(..., description="HH:MM")
    reason: Optional[str] = None

class BlockReportResponse(BaseModel):
    block: EntryResponse
    conflicts: List[ConflictSchema]
    suggestions: List[SuggestionSchema]

def write_response(result) -> TaskWriteResponse:
    """Build the response of a task write from the service's TaskWriteResult."""
    return TaskWriteResponse(
        status=result.status,
        task=TaskResponse.from_task(result.task),
        distribution=DistributionResponse.from_result(result.distribution),
        entries=[EntryResponse.from_entry(e) for e in result.entries],
        conflicts=[ConflictSchema.from_conflict(c) for c in result.conflicts],
        requires_confirmation=result.requires_confirmation,
    )
