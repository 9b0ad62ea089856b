from fastapi import APIRouter, Depends

from app.api.deps import get_llm_client, get_nurse_source
from app.db.nurse_source import NurseSource
from app.services.llm_client import LLMClient

router = APIRouter(tags=["core"])


@router.get("/health")
def health(
    source: NurseSource = Depends(get_nurse_source),
    client: LLMClient = Depends(get_llm_client),
):
    return {
        "ok": True,
        **source.health(),
        "llm": {"configured": client.is_configured, "variant": client.variant},
    }
