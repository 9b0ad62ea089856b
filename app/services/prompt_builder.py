"""Compact request + candidate projection sent to the model.

Only the fields needed for ranking are kept, so the prompt stays small. The
builder never touches its inputs: every call returns fresh dicts and lists.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from app.models.match import MatchRequest

CANDIDATE_FIELDS = (
    "id",
    "name",
    "city",
    "rating",
    "reviewsCount",
    "services",
    "expertiseTags",
    "lat",
    "lng",
    "availability",
)


def build_query(request: MatchRequest) -> Dict[str, Any]:
    time_window = None
    if request.start is not None and request.end is not None:
        time_window = {"start": request.start, "end": request.end}
    location = None
    if request.lat is not None and request.lng is not None:
        location = {"lat": request.lat, "lng": request.lng}
    return {
        "city": request.city or None,
        "servicesQuery": request.resolved_services(),
        "expertiseQuery": list(request.expertise_query or []),
        "timeWindow": time_window,
        "location": location,
        "urgent": bool(request.urgent),
        "topK": request.top_k,
    }


def build_candidate(nurse: Dict[str, Any]) -> Dict[str, Any]:
    reviews = nurse.get("reviewsCount")
    if reviews is None:
        reviews = nurse.get("reviews")
    return {
        "id": nurse.get("id"),
        "name": nurse.get("name"),
        "city": nurse.get("city"),
        "rating": nurse.get("rating"),
        "reviewsCount": reviews,
        "services": list(nurse.get("services") or []),
        "expertiseTags": list(nurse.get("expertiseTags") or []),
        "lat": nurse.get("lat"),
        "lng": nurse.get("lng"),
        # opaque, but copied so the payload never aliases the caller's data
        "availability": _copy_json(nurse.get("availability")),
    }


def build_prompt(request: MatchRequest, candidates: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Return ``{"q": <query>, "c": [<candidate>, ...]}``."""
    c: List[Dict[str, Any]] = [build_candidate(n) for n in candidates]
    return {"q": build_query(request), "c": c}


def _copy_json(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _copy_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_copy_json(v) for v in value]
    return value
