"""Readiness predicates over observed object state."""

from typing import Any, Callable, Dict, Optional

Predicate = Callable[[Optional[Dict[str, Any]]], bool]


def status_condition(obj: Optional[Dict[str, Any]], condition_type: str) -> Optional[Dict[str, Any]]:
    """Return the status condition of ``condition_type``, if reported."""
    if not obj:
        return None
    conditions = (obj.get("status") or {}).get("conditions") or []
    return next((c for c in conditions if c.get("type") == condition_type), None)


def condition_match(condition_type: str, status: str = "True") -> Predicate:
    """Predicate: the object reports ``condition_type`` with ``status``.

    Used for Deployment ``Available=True``.
    """

    def _match(obj: Optional[Dict[str, Any]]) -> bool:
        condition = status_condition(obj, condition_type)
        return condition is not None and condition.get("status") == status

    return _match


def pod_running(pod: Dict[str, Any]) -> bool:
    """A pod is live when it is Running and not being deleted."""
    if (pod.get("metadata") or {}).get("deletionTimestamp"):
        return False
    return (pod.get("status") or {}).get("phase") == "Running"


def absent() -> Predicate:
    """Predicate: the object is gone."""
    return lambda obj: obj is None
