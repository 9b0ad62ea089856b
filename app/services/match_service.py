"""One match request: candidates in, ranked results out.

When the model client is configured the answer comes from the LLM; otherwise
the deterministic mock ranker is used so the endpoint keeps the same contract.

topK bounds the output only: the model sees up to ``max_candidates`` nurses,
is asked for its top K, and the validated list is sliced to K after sorting.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.models.match import MatchRequest
from app.services.llm_client import LLMClient
from app.services.mock_ranker import mock_rank
from app.services.ranking import rank_from_text

logger = logging.getLogger(__name__)

MODE_LIVE = "live"
MODE_MOCK = "mock"


def match_nurses(
    request: MatchRequest,
    nurses: Sequence[Dict[str, Any]],
    client: Optional[LLMClient] = None,
) -> Tuple[List[Dict[str, Any]], str]:
    """Return (results, mode)."""
    if client is None or not client.is_configured:
        logger.info("LLM endpoint not configured, using mock ranking for %d candidates", len(nurses))
        return mock_rank(request, nurses), MODE_MOCK

    text, attempts = client.request_ranking(request, nurses)
    results = rank_from_text(text, nurses, top_k=request.top_k)
    logger.info("Ranked %d results from the model after %d attempt(s)", len(results), attempts)
    return results, MODE_LIVE
