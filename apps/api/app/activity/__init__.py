from app.activity.descriptions import ActivityActionType, ActivityEntityKind, describe_activity
from app.activity.models import ActivityLogEntry, ImmutableRecordError

__all__ = [
    "ActivityActionType",
    "ActivityEntityKind",
    "ActivityLogEntry",
    "ImmutableRecordError",
    "describe_activity",
]
