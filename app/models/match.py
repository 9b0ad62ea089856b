from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class MatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    city: Optional[str] = Field(None, description="Patient city")
    services_query: Optional[List[str]] = Field(None, alias="servicesQuery", description="Requested services, in order")
    service: Optional[str] = Field(None, description="Legacy single-service field")
    expertise_query: List[str] = Field(default_factory=list, alias="expertiseQuery")
    start: Optional[str] = Field(None, description="Start of the requested time window (ISO 8601)")
    end: Optional[str] = Field(None, description="End of the requested time window (ISO 8601)")
    lat: Optional[float] = None
    lng: Optional[float] = None
    urgent: bool = False
    top_k: int = Field(5, alias="topK", ge=1, description="Number of results to return")

    @model_validator(mode="after")
    def _check_pairs(self):
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be provided together")
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be provided together")
        return self

    @field_validator("expertise_query", "urgent", "top_k", mode="before")
    @classmethod
    def _null_as_default(cls, value, info):
        if value is None:
            return {"expertise_query": [], "urgent": False, "top_k": 5}[info.field_name]
        return value

    def resolved_services(self) -> List[str]:
        """servicesQuery when given, else the legacy single service, else empty."""
        if self.services_query is not None:
            return list(self.services_query)
        return [self.service] if self.service else []


class MatchResult(BaseModel):
    id: str
    name: str
    score: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""


class MatchResponse(BaseModel):
    count: int
    results: List[MatchResult]
    mode: str = Field(..., description="'live' when ranked by the model, 'mock' for the local fallback")


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None
