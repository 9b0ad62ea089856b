from typing import Any, Dict, List, Sequence

from app.models.match import MatchRequest

SCORE_STEP = 0.15


def _mock_reason(nurse: Dict[str, Any]) -> str:
    services = nurse.get("services") or []
    service = services[0] if services else None
    city = nurse.get("city")
    if service and city:
        return f"Mock match: offers {service} in {city}"
    if service:
        return f"Mock match: offers {service}"
    if city:
        return f"Mock match: based in {city}"
    return "Mock match"


def mock_rank(request: MatchRequest, candidates: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Deterministic stand-in ranking: the first topK candidates in list order.

    Scores start at 1.0 and drop by SCORE_STEP per position, floored at 0.
    """
    out: List[Dict[str, Any]] = []
    for i, nurse in enumerate(candidates[: request.top_k]):
        nid = str(nurse.get("id"))
        out.append({
            "id": nid,
            "name": nurse.get("name") or nid,
            "score": round(max(0.0, 1.0 - SCORE_STEP * i), 2),
            "reason": _mock_reason(nurse),
        })
    return out
