from fastapi import Request

from app.db.nurse_source import NurseSource
from app.services.llm_client import LLMClient


def get_nurse_source(request: Request) -> NurseSource:
    return request.app.state.nurse_source


def get_llm_client(request: Request) -> LLMClient:
    return request.app.state.llm_client
