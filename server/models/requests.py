from pydantic import BaseModel, Field


class KnowledgeBaseCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    top_k: int | None = Field(default=None, ge=1, le=100)


class KnowledgeBaseUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    top_k: int | None = Field(default=None, ge=1, le=100)


class AddDocumentsRequest(BaseModel):
    document_ids: list[str] = Field(min_length=1)


class QuestionRequest(BaseModel):
    question: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=100)
