"""HTTP routes for course processing, grounded chat and cache administration."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from .errors import ChatServiceError
from .models import ProcessingResult, ReferencedDocument
from .service import TutorService, get_tutor_service

router = APIRouter()


class ProcessingResultModel(BaseModel):
    document_id: str
    success: bool
    chunks_created: int
    chunks_failed: int
    error: Optional[str] = None


class ProcessCourseResponse(BaseModel):
    course_id: str
    processed: int
    failed: int
    results: list[ProcessingResultModel]


class ChatRequest(BaseModel):
    """Request body accepted by the prompt and chat endpoints."""

    question: str = Field(..., min_length=1, description="Student question about the course.")
    session_id: Optional[str] = Field(None, description="Chat session whose history should be included.")
    supplemental_context: Optional[str] = Field(
        None,
        description="Analysis of a document the student shared, if any.",
    )
    include_references: bool = True


class ReferencedDocumentModel(BaseModel):
    title: str
    url: Optional[str] = None
    chunk_id: str
    similarity: float


class PromptResponse(BaseModel):
    variant: str
    system_prompt: str
    truncated: bool
    estimated_tokens: int
    history_turns: int
    referenced_documents: list[ReferencedDocumentModel]


class ChatResponse(BaseModel):
    answer: str
    model: str
    variant: str
    usage: dict[str, int]
    referenced_documents: list[ReferencedDocumentModel]
    external_references: Optional[dict[str, Any]] = None


def _result_model(result: ProcessingResult) -> ProcessingResultModel:
    return ProcessingResultModel(
        document_id=result.document_id,
        success=result.success,
        chunks_created=result.chunks_created,
        chunks_failed=result.chunks_failed,
        error=result.error,
    )


def _referenced(documents: list[ReferencedDocument]) -> list[ReferencedDocumentModel]:
    return [
        ReferencedDocumentModel(
            title=document.title,
            url=document.url,
            chunk_id=document.chunk_id,
            similarity=round(document.similarity, 4),
        )
        for document in documents
    ]


def _require_course(service: TutorService, course_id: str) -> None:
    if service.repository.get_course(course_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown course: {course_id}")


@router.post("/courses/{course_id}/process", response_model=ProcessCourseResponse)
async def process_course(
    course_id: str,
    service: TutorService = Depends(get_tutor_service),
) -> ProcessCourseResponse:
    """Process every unprocessed document of a course."""

    _require_course(service, course_id)
    results = await service.pipeline.process_course_documents(course_id)
    return ProcessCourseResponse(
        course_id=course_id,
        processed=sum(1 for result in results if result.success),
        failed=sum(1 for result in results if not result.success),
        results=[_result_model(result) for result in results],
    )


@router.post("/documents/{document_id}/process", response_model=ProcessingResultModel)
async def process_document(
    document_id: str,
    service: TutorService = Depends(get_tutor_service),
) -> ProcessingResultModel:
    if service.repository.get_document(document_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown document: {document_id}")
    return _result_model(await service.pipeline.process_document(document_id))


@router.post("/courses/{course_id}/prompt", response_model=PromptResponse)
async def preview_prompt(
    course_id: str,
    request: ChatRequest,
    service: TutorService = Depends(get_tutor_service),
) -> PromptResponse:
    """Return the grounded prompt without calling the chat model."""

    _require_course(service, course_id)
    prompt = await service.orchestrator.build_grounded_prompt(
        request.question,
        course_id,
        request.session_id,
        supplemental=request.supplemental_context,
        include_references=request.include_references,
    )
    return PromptResponse(
        variant=prompt.variant.value,
        system_prompt=prompt.system_prompt,
        truncated=prompt.truncated,
        estimated_tokens=prompt.estimated_tokens,
        history_turns=len(prompt.history),
        referenced_documents=_referenced(prompt.referenced_documents),
    )


@router.post("/courses/{course_id}/chat", response_model=ChatResponse)
async def chat(
    course_id: str,
    request: ChatRequest,
    service: TutorService = Depends(get_tutor_service),
) -> ChatResponse:
    _require_course(service, course_id)
    try:
        answer = await service.orchestrator.answer(
            request.question,
            course_id,
            request.session_id,
            supplemental=request.supplemental_context,
            include_references=request.include_references,
        )
    except ChatServiceError as exc:
        status_code = 503 if exc.transient else 502
        raise HTTPException(status_code=status_code, detail="The assistant is unavailable right now") from exc

    references = answer.external_references
    return ChatResponse(
        answer=answer.content,
        model=answer.model,
        variant=answer.variant.value,
        usage={
            "prompt_tokens": answer.usage.prompt_tokens,
            "completion_tokens": answer.usage.completion_tokens,
            "total_tokens": answer.usage.total_tokens,
        },
        referenced_documents=_referenced(list(answer.referenced_documents)),
        external_references=references.model_dump() if references and not references.is_empty() else None,
    )


@router.get("/cache/stats")
def cache_stats(service: TutorService = Depends(get_tutor_service)) -> dict[str, Any]:
    return service.orchestrator.cache_stats().as_dict()


@router.delete("/cache")
def clear_cache(service: TutorService = Depends(get_tutor_service)) -> dict[str, str]:
    service.orchestrator.clear_cache()
    return {"status": "cleared"}
