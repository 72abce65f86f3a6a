from pydantic import BaseModel


class DocumentIndexedResponse(BaseModel):
    document_id: str
    is_indexed: bool


class ErrorResponse(BaseModel):
    detail: str
    error: str
