from __future__ import annotations

import logging

from app.metrics import observe_store_failure


logger = logging.getLogger("app.failures")


def report_store_failure(component: str, operation: str, exc: BaseException, **fields: object) -> None:
    """Single reporting point for persistence errors that are swallowed on purpose.

    Notices and activity entries are best-effort side effects of domain writes
    that already committed, so their failures are logged and counted here and
    never raised to the end user.
    """
    observe_store_failure(component, operation)
    extra: dict[str, object] = {
        "component": component,
        "operation": operation,
        "error": f"{type(exc).__name__}: {exc}",
    }
    extra.update(fields)
    logger.warning("notice_store.failure", extra=extra)
