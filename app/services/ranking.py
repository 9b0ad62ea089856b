"""Validate the model's JSON answer and turn it into ranked match results."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from app.services.llm_client import LLMResponseError
from app.services.redact import excerpt

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


def _strip_fence(text: str) -> str:
    m = _FENCE_RE.match(text)
    return m.group(1) if m else text


def _score(entry: Dict[str, Any], raw: str) -> float:
    value = entry.get("score")
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise LLMResponseError(f"LLM result for id {entry.get('id')!r} has a non-numeric score: {excerpt(raw)}")
    return min(1.0, max(0.0, float(value)))


def parse_results(text: str) -> List[Dict[str, Any]]:
    """Parse and validate the ``results`` array from the model's text."""
    raw = text or ""
    try:
        parsed = json.loads(_strip_fence(raw))
    except ValueError:
        raise LLMResponseError(f"LLM did not return valid JSON: {excerpt(raw)}") from None
    if not isinstance(parsed, dict):
        raise LLMResponseError(f"LLM JSON is not an object: {excerpt(raw)}")

    results = parsed.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        raise LLMResponseError(f"LLM 'results' is not an array: {excerpt(raw)}")

    out: List[Dict[str, Any]] = []
    for entry in results:
        if not isinstance(entry, dict):
            raise LLMResponseError(f"LLM result entry is not an object: {excerpt(raw)}")
        rid = entry.get("id")
        if not isinstance(rid, str) or not rid:
            raise LLMResponseError(f"LLM result entry is missing 'id': {excerpt(raw)}")
        reason = entry.get("reason")
        out.append({
            "id": rid,
            "score": _score(entry, raw),
            "reason": reason if isinstance(reason, str) else "",
        })
    return out


def rank_results(
    results: Sequence[Dict[str, Any]],
    candidates: Sequence[Dict[str, Any]],
    top_k: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Sort by descending score, attach names from the full candidate list."""
    by_id = {str(n.get("id")): n for n in candidates if n.get("id") is not None}
    ordered = sorted(results, key=lambda r: r.get("score") or 0.0, reverse=True)

    ranked: List[Dict[str, Any]] = []
    seen = set()
    for r in ordered:
        if r["id"] in seen:
            continue
        seen.add(r["id"])
        nurse = by_id.get(r["id"])
        if nurse is None:
            logger.info("Model returned unknown candidate id %r", r["id"])
        ranked.append({
            "id": r["id"],
            "name": (nurse or {}).get("name") or r["id"],
            "score": r["score"],
            "reason": r["reason"],
        })
    if top_k is not None:
        ranked = ranked[:top_k]
    return ranked


def rank_from_text(text: str, candidates: Sequence[Dict[str, Any]], top_k: Optional[int] = None) -> List[Dict[str, Any]]:
    return rank_results(parse_results(text), candidates, top_k=top_k)
