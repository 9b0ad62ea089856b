import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_llm_client, get_nurse_source
from app.db.nurse_source import NurseSource
from app.models.match import ErrorResponse, MatchRequest, MatchResponse
from app.services.llm_client import LLMClient, LLMError
from app.services.match_service import match_nurses
from app.services.redact import excerpt

logger = logging.getLogger(__name__)

router = APIRouter(tags=["match"])


@router.post(
    "/match",
    response_model=MatchResponse,
    responses={500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
def match(
    req: MatchRequest,
    source: NurseSource = Depends(get_nurse_source),
    client: LLMClient = Depends(get_llm_client),
):
    """Rank nurses for a patient request.

    The full candidate list comes from the configured nurse source; the ranking
    comes from the LLM, or from the mock ranker when no endpoint is configured.
    """
    try:
        nurses = source.load_nurses()
        results, mode = match_nurses(req, nurses, client)
    except LLMError as exc:
        logger.error("LLM match failed: %s", exc)
        return JSONResponse(status_code=502, content=ErrorResponse(error="LLM error", detail=str(exc)).model_dump())
    except Exception as exc:
        logger.exception("Match pipeline failed")
        return JSONResponse(status_code=500, content=ErrorResponse(error="Match error", detail=excerpt(str(exc))).model_dump())
    return {"count": len(results), "results": results, "mode": mode}
