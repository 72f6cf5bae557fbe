from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.activity.descriptions import ActivityEntityKind
from app.activity.schemas import ActivityCreate, ActivityRead, ActivityRecordResult
from app.activity.service import ActivityRecorder
from app.core.auth import ActorUser, get_current_actor
from app.core.database import get_db
from app.notifications.api import notification_service

router = APIRouter(prefix="/api/activities", tags=["activities"])
recorder = ActivityRecorder(notifications=notification_service)


@router.get("", response_model=list[ActivityRead])
def list_activities(
    limit: int = Query(default=50, ge=1, le=200),
    entity_kind: ActivityEntityKind | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[ActivityRead]:
    rows = recorder.list_for_actor(
        db,
        user.user_id,
        limit=limit,
        entity_kind=entity_kind.value if entity_kind else None,
        entity_id=entity_id,
    )
    return [ActivityRead.from_model(row) for row in rows]


@router.post("", response_model=ActivityRecordResult, status_code=status.HTTP_201_CREATED)
def record_activity(
    response: Response,
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> ActivityRecordResult:
    entry = recorder.record(
        db,
        actor_id=user.user_id,
        action_type=dto.action_type,
        entity_kind=dto.entity_kind.value,
        entity_id=dto.entity_id,
        entity_title=dto.entity_title,
        metadata=dto.metadata,
    )
    if entry is None:
        response.status_code = status.HTTP_200_OK
        return ActivityRecordResult(recorded=False)
    return ActivityRecordResult(recorded=True, entry=ActivityRead.from_model(entry))
