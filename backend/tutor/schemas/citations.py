"""Citation lookup schema."""

from pydantic import BaseModel, Field


class CitationResponse(BaseModel):
    ok: bool = True
    resource_id: str = Field(alias="resourceId")
    name: str
    citation_id: str = Field(alias="citationId")
    snippet: str
    chunk_index: int = Field(alias="chunkIndex")

    class Config:
        populate_by_name = True
