from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from printflow import schemas
from printflow.deps import get_clock, get_db
from printflow.domain import DispatchConfirmation, Order, OrderLine, Stage
from printflow.services import analytics, baseline_store, repository, workflow
from printflow.services.health import score
from printflow.services.learning import LearningBaseline
from printflow.services.prediction import predict_delay
from printflow.services.priority import classify_priority
from printflow.services.recommendations import recommendations_for_reasons
from printflow.services.workflow import TransitionResult

router = APIRouter(
    prefix="/api",
    tags=["api"],
    responses={
        status.HTTP_404_NOT_FOUND: {"model": schemas.ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": schemas.ErrorResponse},
    },
)


def _line_view(line: OrderLine, order: Order | None, now: datetime) -> schemas.LineView:
    delivery = line.delivery_date if line.delivery_date is not None else (order.delivery_date if order else None)
    return schemas.LineView.model_validate(
        {
            "id": line.id,
            "orderId": line.order_id,
            "productName": line.product_name,
            "deliveryDate": line.delivery_date,
            "priority": classify_priority(delivery, now).value,
            "currentStage": line.current_stage.value,
            "currentSubstage": line.current_substage,
            "stageSequence": list(line.stage_sequence),
            "stageEnteredAt": line.stage_entered_at,
            "stageDurations": {stage.value: round(hours, 4) for stage, hours in line.stage_durations.items()},
            "assigneeId": line.assignee_id,
            "assignedDepartment": line.assigned_department.value,
            "dispatched": line.dispatched,
            "dispatchedAt": line.dispatched_at,
            "dispatchInfo": (
                {"courier": line.dispatch_info.courier, "trackingNumber": line.dispatch_info.tracking_number}
                if line.dispatch_info
                else None
            ),
            "delayReasons": [
                {
                    "category": reason.category,
                    "text": reason.text,
                    "stage": reason.stage.value if reason.stage else None,
                    "recordedAt": reason.recorded_at,
                }
                for reason in line.delay_reasons
            ],
            "notes": [{"text": note.text, "recordedAt": note.recorded_at} for note in line.notes],
            "version": line.version,
        }
    )


def _order_view(order: Order, now: datetime) -> schemas.OrderView:
    return schemas.OrderView(
        id=order.id,
        customerName=order.customer_name,
        deliveryDate=order.delivery_date,
        isCompleted=order.is_completed,
        lines=[_line_view(line, order, now) for line in order.lines],
    )


def _transition_response(db: Session, result: TransitionResult, now: datetime) -> schemas.TransitionResponse:
    order = repository.get_order(db, result.line.order_id)
    return schemas.TransitionResponse(
        line=_line_view(result.line, order, now),
        dispatchConfirmationRequired=result.dispatch_confirmation_required,
    )


def _confirmation(payload: schemas.DispatchConfirmationPayload | None) -> DispatchConfirmation | None:
    if payload is None:
        return None
    return DispatchConfirmation(courier=payload.courier, tracking_number=payload.trackingNumber)


def _baseline_response(baseline: LearningBaseline) -> schemas.BaselineResponse:
    return schemas.BaselineResponse(
        stages={
            stage.value: schemas.StageBaselineView(
                mean=entry.mean,
                median=entry.median,
                p95=entry.p95,
                sampleCount=entry.sample_count,
                lastUpdated=entry.last_updated,
                delayRate=entry.delay_rate,
            )
            for stage, entry in baseline.stages.items()
        },
        assignees={
            assignee_id: schemas.AssigneeBaselineView(
                avgTotalHours=entry.avg_total_hours,
                delayRate=entry.delay_rate,
                linesHandled=entry.lines_handled,
            )
            for assignee_id, entry in baseline.assignees.items()
        },
        commonDelayCauses=baseline.common_delay_causes,
        calibrationConfidence=baseline.calibration_confidence,
        sampleCount=baseline.sample_count,
        hasSufficientSamples=baseline.has_sufficient_samples,
        lastUpdated=baseline.last_updated,
    )


@router.post("/priority/classify", response_model=schemas.ClassifyPriorityResponse)
def classify(payload: schemas.ClassifyPriorityRequest, now: datetime = Depends(get_clock)):
    return schemas.ClassifyPriorityResponse(tier=classify_priority(payload.deliveryDate, payload.now or now).value)


@router.post("/orders", response_model=schemas.OrderView, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: schemas.OrderCreateRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    order = repository.create_order(
        db,
        customer_name=payload.customerName,
        delivery_date=payload.deliveryDate,
        lines=[
            {
                "product_name": line.productName,
                "delivery_date": line.deliveryDate,
                "assignee_id": line.assigneeId,
                "stage_sequence": line.stageSequence,
            }
            for line in payload.lines
        ],
        now=now,
    )
    return _order_view(order, now)


@router.get("/orders/{order_id}", response_model=schemas.OrderView)
def get_order(order_id: str, db: Session = Depends(get_db), now: datetime = Depends(get_clock)):
    return _order_view(repository.get_order(db, order_id), now)


@router.get("/lines", response_model=schemas.LineListResponse)
def list_lines(
    stage: Stage | None = Query(default=None),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    lines = repository.lines_by_stage(db, stage)
    orders = {order.id: order for order in repository.list_orders(db)}
    items = [_line_view(line, orders.get(line.order_id), now) for line in lines]
    return schemas.LineListResponse(items=items, total=len(items))


@router.post("/lines/{line_id}/advance", response_model=schemas.TransitionResponse)
def advance_line(
    line_id: str,
    payload: schemas.AdvanceRequest | None = None,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    confirmation = _confirmation(payload.confirmation if payload else None)
    result = repository.apply_transition(
        db, line_id, lambda line: workflow.advance(line, now, confirmation), "advanced", now
    )
    return _transition_response(db, result, now)


@router.post("/lines/{line_id}/jump", response_model=schemas.TransitionResponse)
def jump_line(
    line_id: str,
    payload: schemas.JumpRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    result = repository.apply_transition(
        db, line_id, lambda line: workflow.jump_to_substage(line, payload.target, now), "substage_jumped", now
    )
    return _transition_response(db, result, now)


@router.post("/lines/{line_id}/complete-substage", response_model=schemas.TransitionResponse)
def complete_line_substage(
    line_id: str,
    payload: schemas.CompleteSubstageRequest | None = None,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    confirmation = _confirmation(payload.confirmation if payload else None)
    result = repository.apply_transition(
        db,
        line_id,
        lambda line: workflow.complete_substage(line, now, confirmation),
        "substage_completed",
        now,
    )
    return _transition_response(db, result, now)


@router.post("/lines/{line_id}/confirm-dispatch", response_model=schemas.TransitionResponse)
def confirm_line_dispatch(
    line_id: str,
    payload: schemas.DispatchConfirmationPayload,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    confirmation = _confirmation(payload)
    result = repository.apply_transition(
        db, line_id, lambda line: workflow.confirm_dispatch(line, confirmation, now), "dispatched", now
    )
    return _transition_response(db, result, now)


@router.post("/lines/{line_id}/department", response_model=schemas.TransitionResponse)
def assign_line_department(
    line_id: str,
    payload: schemas.DepartmentRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    result = repository.apply_transition(
        db, line_id, lambda line: workflow.assign_department(line, payload.department), "department_assigned", now
    )
    return _transition_response(db, result, now)


@router.post("/lines/{line_id}/assignee", response_model=schemas.TransitionResponse)
def assign_line_user(
    line_id: str,
    payload: schemas.AssigneeRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    result = repository.apply_transition(
        db, line_id, lambda line: workflow.assign_user(line, payload.assigneeId), "user_assigned", now
    )
    return _transition_response(db, result, now)


@router.put("/lines/{line_id}/sequence", response_model=schemas.TransitionResponse)
def set_line_sequence(
    line_id: str,
    payload: schemas.SequenceRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    result = repository.apply_transition(
        db, line_id, lambda line: workflow.set_stage_sequence(line, payload.sequence), "sequence_set", now
    )
    return _transition_response(db, result, now)


@router.post(
    "/lines/{line_id}/delay-reasons",
    response_model=schemas.TransitionResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_line_delay_reason(
    line_id: str,
    payload: schemas.DelayReasonRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    result = repository.apply_transition(
        db,
        line_id,
        lambda line: workflow.record_delay_reason(line, payload.category, payload.text, now),
        "delay_reason_added",
        now,
    )
    return _transition_response(db, result, now)


@router.post("/lines/{line_id}/notes", response_model=schemas.TransitionResponse, status_code=status.HTTP_201_CREATED)
def add_line_note(
    line_id: str,
    payload: schemas.NoteRequest,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    result = repository.apply_transition(
        db, line_id, lambda line: workflow.add_note(line, payload.text, now), "note_added", now
    )
    return _transition_response(db, result, now)


@router.get("/lines/{line_id}/health", response_model=schemas.HealthScoreResponse)
def get_line_health(
    line_id: str,
    open_line_count: int | None = Query(default=None, alias="openLineCount", ge=0),
    historical_delay_count: int | None = Query(default=None, alias="historicalDelayCount", ge=0),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_clock),
):
    line, order = repository.get_line_with_order(db, line_id)
    if open_line_count is None:
        open_line_count = repository.open_line_count(db, line.assignee_id)
    if historical_delay_count is None:
        historical_delay_count = len(line.delay_reasons)
    result = score(
        line,
        order,
        baseline_store.load_baseline(db),
        open_line_count=open_line_count,
        historical_delay_count=historical_delay_count,
        now=now,
    )
    return schemas.HealthScoreResponse(
        lineId=result.line_id,
        orderId=result.order_id,
        score=result.score,
        status=result.status.value,
        factors=result.factors,
        reasonCodes=result.reason_codes,
        delayProbability=result.delay_probability,
        recommendedActions=recommendations_for_reasons(result.reason_codes),
        calculatedAt=result.calculated_at,
    )


@router.get("/lines/{line_id}/delay-probability", response_model=schemas.DelayProbabilityResponse)
def get_line_delay_probability(line_id: str, db: Session = Depends(get_db), now: datetime = Depends(get_clock)):
    line, order = repository.get_line_with_order(db, line_id)
    probability = predict_delay(line, order, baseline_store.load_baseline(db), now)
    return schemas.DelayProbabilityResponse(lineId=line.id, probability=probability)


@router.get("/lines/{line_id}/events", response_model=list[schemas.StageEventView])
def list_line_events(line_id: str, db: Session = Depends(get_db)):
    return [
        schemas.StageEventView(
            action=event.action,
            fromStage=event.from_stage,
            fromSubstage=event.from_substage,
            toStage=event.to_stage,
            toSubstage=event.to_substage,
            hoursFlushed=event.hours_flushed,
            createdAt=event.created_at,
        )
        for event in repository.stage_events(db, line_id)
    ]


@router.get("/learning/baseline", response_model=schemas.BaselineResponse)
def get_baseline(db: Session = Depends(get_db)):
    return _baseline_response(baseline_store.load_baseline(db))


@router.post("/learning/recompute", response_model=schemas.BaselineResponse)
def recompute(db: Session = Depends(get_db), now: datetime = Depends(get_clock)):
    return _baseline_response(baseline_store.run_recompute(db, now=now))


@router.get("/analytics/delivery-performance", response_model=schemas.DeliveryPerformanceResponse)
def get_delivery_performance(db: Session = Depends(get_db), now: datetime = Depends(get_clock)):
    report = analytics.delivery_performance(repository.list_orders(db), now)
    return schemas.DeliveryPerformanceResponse(
        totalLines=report.total_lines,
        onTime=report.on_time,
        delayed=report.delayed,
        atRisk=report.at_risk,
        onTimePercentage=report.on_time_percentage,
        averageLifecycleHours=report.average_lifecycle_hours,
        departmentDelays={
            department: schemas.DepartmentDelaysView(
                count=entry.count,
                percentage=entry.percentage,
                averageDelayHours=entry.average_delay_hours,
            )
            for department, entry in report.department_delays.items()
        },
    )


@router.get("/analytics/delay-reasons", response_model=schemas.DelayReasonStatsResponse)
def get_delay_reason_stats(db: Session = Depends(get_db)):
    stats = analytics.delay_reason_stats(repository.all_lines(db))
    return schemas.DelayReasonStatsResponse(
        byCategory=stats.by_category,
        byStage=stats.by_stage,
        mostCommon=[{"category": category, "count": count} for category, count in stats.most_common],
    )
