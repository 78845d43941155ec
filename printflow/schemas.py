from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from printflow import config
from printflow.errors import InvalidTransition
from printflow.services.workflow import normalize_stage_sequence


class ClassifyPriorityRequest(BaseModel):
    deliveryDate: date | datetime | None = None
    now: datetime | None = None


class ClassifyPriorityResponse(BaseModel):
    tier: str


class LineCreate(BaseModel):
    productName: str = Field(min_length=1, max_length=255)
    deliveryDate: date | datetime | None = None
    assigneeId: str | None = None
    stageSequence: list[str] | None = None

    @field_validator("stageSequence")
    @classmethod
    def sequence_valid(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        try:
            return list(normalize_stage_sequence(value))
        except InvalidTransition as exc:
            raise ValueError(exc.message) from exc


class OrderCreateRequest(BaseModel):
    customerName: str = Field(min_length=1, max_length=255)
    deliveryDate: date | datetime | None = None
    lines: list[LineCreate] = Field(min_length=1)


class DelayReasonView(BaseModel):
    category: str
    text: str
    stage: str | None
    recordedAt: datetime | None


class NoteView(BaseModel):
    text: str
    recordedAt: datetime


class DispatchInfoView(BaseModel):
    courier: str
    trackingNumber: str


class LineView(BaseModel):
    id: str
    orderId: str | None
    productName: str
    deliveryDate: datetime | None
    priority: str
    currentStage: str
    currentSubstage: str | None
    stageSequence: list[str]
    stageEnteredAt: datetime | None
    stageDurations: dict[str, float]
    assigneeId: str | None
    assignedDepartment: str
    dispatched: bool
    dispatchedAt: datetime | None
    dispatchInfo: DispatchInfoView | None
    delayReasons: list[DelayReasonView]
    notes: list[NoteView]
    version: int


class OrderView(BaseModel):
    id: str
    customerName: str
    deliveryDate: datetime | None
    isCompleted: bool
    lines: list[LineView]


class LineListResponse(BaseModel):
    items: list[LineView]
    total: int


class DispatchConfirmationPayload(BaseModel):
    courier: str = Field(default="", max_length=128)
    trackingNumber: str = Field(min_length=1, max_length=128)


class AdvanceRequest(BaseModel):
    confirmation: DispatchConfirmationPayload | None = None


class CompleteSubstageRequest(BaseModel):
    confirmation: DispatchConfirmationPayload | None = None


class JumpRequest(BaseModel):
    target: str = Field(min_length=1)


class DepartmentRequest(BaseModel):
    department: str = Field(min_length=1)


class AssigneeRequest(BaseModel):
    assigneeId: str | None = None


class SequenceRequest(BaseModel):
    sequence: list[str] = Field(min_length=1)


class DelayReasonRequest(BaseModel):
    category: str
    text: str = Field(default="", max_length=500)

    @field_validator("category")
    @classmethod
    def category_supported(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in config.DELAY_REASON_CATEGORIES:
            raise ValueError(f"category must be one of {sorted(config.DELAY_REASON_CATEGORIES)}")
        return value


class NoteRequest(BaseModel):
    text: str = Field(min_length=1, max_length=500)


class TransitionResponse(BaseModel):
    line: LineView
    dispatchConfirmationRequired: bool


class HealthScoreResponse(BaseModel):
    lineId: str
    orderId: str | None
    score: int
    status: str
    factors: dict[str, int]
    reasonCodes: list[str]
    delayProbability: float | None
    recommendedActions: list[dict[str, str]]
    calculatedAt: datetime


class DelayProbabilityResponse(BaseModel):
    lineId: str
    probability: float


class StageEventView(BaseModel):
    action: str
    fromStage: str
    fromSubstage: str | None
    toStage: str
    toSubstage: str | None
    hoursFlushed: float
    createdAt: datetime


class StageBaselineView(BaseModel):
    mean: float
    median: float
    p95: float
    sampleCount: int
    lastUpdated: datetime | None
    delayRate: float


class AssigneeBaselineView(BaseModel):
    avgTotalHours: float
    delayRate: float
    linesHandled: int


class BaselineResponse(BaseModel):
    stages: dict[str, StageBaselineView]
    assignees: dict[str, AssigneeBaselineView]
    commonDelayCauses: dict[str, int]
    calibrationConfidence: float
    sampleCount: int
    hasSufficientSamples: bool
    lastUpdated: datetime | None


class DepartmentDelaysView(BaseModel):
    count: int
    percentage: float
    averageDelayHours: float


class DeliveryPerformanceResponse(BaseModel):
    totalLines: int
    onTime: int
    delayed: int
    atRisk: int
    onTimePercentage: float
    averageLifecycleHours: float
    departmentDelays: dict[str, DepartmentDelaysView]


class DelayReasonStatsResponse(BaseModel):
    byCategory: dict[str, int]
    byStage: dict[str, int]
    mostCommon: list[dict[str, Any]]


class ErrorResponse(BaseModel):
    detail: str | dict[str, Any] | list[Any]
    errorCode: str | None = None
