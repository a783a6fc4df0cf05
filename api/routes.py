import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from analysis.delivery import NotDeliverable, deliver_plan
from analysis.errors import (
    AnalysisError,
    AuthError,
    ConfigurationError,
    InvalidTransition,
    MalformedResponse,
    PersistenceError,
    ProviderError,
    Timeout,
)
from analysis.pipeline import AnalysisPipeline
from analysis.review import AnalysisNotFound, ReviewStatus, annotate, decide, edit_content
from api import settings_store
from api.analysis_models import (
    AnalysisListResponse,
    AnalysisResponse,
    ContentEditRequest,
    DecisionRequest,
    DeliveryRequest,
    PatientCreate,
    PatientListResponse,
    PatientResponse,
    PatientUpdate,
    RagDocumentCreate,
    RagDocumentResponse,
    RagSearchRequest,
    RagSearchResponse,
    RagSnippetResponse,
    ReviewRequest,
    RunAnalysisRequest,
)
from api.auth import ROLE_SUPERADMIN
from api.config_models import (
    AnalysisTypeEnum,
    GlobalAIConfig,
    GlobalAIConfigUpdate,
    LLMProviderEnum,
    ProviderTestRequest,
    ProviderTestResponse,
)
from api.rate_limit import ANALYZE_RATE_LIMIT, limiter
from llm.client import check_provider
from llm.retrieval import EmbeddingRetriever, Retriever
from storage.database import Database, get_db
from storage.keychain import KeychainManager, get_keychain

_logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependencies ---


def get_store() -> Database:
    return get_db()


def get_secrets() -> KeychainManager:
    return get_keychain()


def get_config(
    store: Database = Depends(get_store),
    secrets: KeychainManager = Depends(get_secrets),
) -> GlobalAIConfig:
    return settings_store.get_global_config(db=store, keychain=secrets)


def get_retriever(
    store: Database = Depends(get_store),
    config: GlobalAIConfig = Depends(get_config),
) -> Optional[Retriever]:
    """Embedding retriever, available once an OpenAI key is configured."""
    api_key = config.api_keys.for_provider(LLMProviderEnum.OPENAI)
    if not api_key:
        return None
    return EmbeddingRetriever(store, api_key)


def get_pipeline(
    store: Database = Depends(get_store),
    config: GlobalAIConfig = Depends(get_config),
    retriever: Optional[Retriever] = Depends(get_retriever),
) -> AnalysisPipeline:
    return AnalysisPipeline(config=config, store=store, retriever=retriever)


def _identity(request: Request) -> tuple[str, str]:
    """(company_id, user_id) from request state (set by AuthMiddleware)."""
    company_id = getattr(request.state, "company_id", None)
    user_id = getattr(request.state, "user_id", None)
    if not company_id or not user_id:
        raise HTTPException(status_code=401, detail="Tenant could not be determined.")
    return company_id, user_id


def _require_superadmin(request: Request) -> str:
    _, user_id = _identity(request)
    if getattr(request.state, "role", None) != ROLE_SUPERADMIN:
        raise HTTPException(status_code=403, detail="Superadmin role required.")
    return user_id


# --- Error mapping ---


def status_for(exc: AnalysisError) -> int:
    if isinstance(exc, ConfigurationError):
        return 422
    if isinstance(exc, AuthError):
        return 424
    if isinstance(exc, Timeout):
        return 504
    if isinstance(exc, (ProviderError, MalformedResponse)):
        return 502
    if isinstance(exc, InvalidTransition):
        return 409
    if isinstance(exc, PersistenceError):
        return 500
    return 500


async def analysis_error_handler(request: Request, exc: AnalysisError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        _logger.warning(
            "%s on %s %s (analysis %s)",
            exc.category, request.method, request.url.path, exc.analysis_id,
        )
    return JSONResponse(
        status_code=status,
        content={
            "detail": exc.message,
            "category": exc.category,
            "analysis_id": exc.analysis_id,
        },
    )


def _mask_api_key(key: Optional[str]) -> Optional[str]:
    """Mask an API key for display, keeping first 8 and last 4 chars."""
    if not key:
        return key
    if len(key) < 16:
        return "***"
    return key[:8] + "..." + key[-4:]


def _masked(config: GlobalAIConfig) -> GlobalAIConfig:
    keys = config.api_keys.model_copy(update={
        p.value: _mask_api_key(config.api_keys.for_provider(p)) for p in LLMProviderEnum
    })
    return config.model_copy(update={"api_keys": keys})


# --- Health ---


@router.get("/health")
async def health_check(store: Database = Depends(get_store)):
    try:
        store.get_global_config()
        return {"status": "ok"}
    except Exception:
        return {"status": "starting"}


# --- Global AI config ---


@router.get("/settings/global-ai-config", response_model=GlobalAIConfig)
async def read_global_config(
    request: Request,
    config: GlobalAIConfig = Depends(get_config),
):
    _require_superadmin(request)
    return _masked(config)


@router.put("/settings/global-ai-config", response_model=GlobalAIConfig)
async def write_global_config(
    request: Request,
    update: GlobalAIConfigUpdate = Body(...),
    store: Database = Depends(get_store),
    secrets: KeychainManager = Depends(get_secrets),
):
    user_id = _require_superadmin(request)
    updated = settings_store.update_global_config(
        update, user_id, db=store, keychain=secrets,
    )
    return _masked(updated)


@router.post("/settings/global-ai-config/reset", response_model=GlobalAIConfig)
async def reset_global_config(
    request: Request,
    store: Database = Depends(get_store),
    secrets: KeychainManager = Depends(get_secrets),
):
    user_id = _require_superadmin(request)
    return _masked(settings_store.reset_global_config(user_id, db=store, keychain=secrets))


@router.post("/settings/ai-providers/test", response_model=ProviderTestResponse)
async def check_ai_provider(
    request: Request,
    body: ProviderTestRequest = Body(...),
    config: GlobalAIConfig = Depends(get_config),
):
    _require_superadmin(request)
    api_key = body.api_key or config.api_keys.for_provider(body.provider)
    if not api_key:
        raise ConfigurationError(
            f"No API key configured for provider '{body.provider.value}'",
            missing=[f"{body.provider.value}_api_key"],
        )
    success, model, elapsed_ms, error = await check_provider(
        body.provider, api_key, body.model,
    )
    return ProviderTestResponse(
        success=success,
        provider=body.provider,
        model=model,
        response_time_ms=elapsed_ms,
        message="Connection successful" if success else None,
        error=error,
    )


# --- Patients ---


def _load_patient(store: Database, company_id: str, patient_id: str) -> dict:
    patient = store.get_patient(company_id, patient_id)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found.")
    return patient


@router.post("/patients", response_model=PatientResponse, status_code=201)
async def create_patient(
    request: Request,
    body: PatientCreate = Body(...),
    store: Database = Depends(get_store),
):
    company_id, user_id = _identity(request)
    return store.create_patient(
        company_id, body.model_dump(mode="json"), created_by=user_id,
    )


@router.get("/patients", response_model=PatientListResponse)
async def list_patients(
    request: Request,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None),
    store: Database = Depends(get_store),
):
    company_id, _ = _identity(request)
    items, total = store.list_patients(company_id, offset=offset, limit=limit, search=search)
    return PatientListResponse(items=items, total=total)


@router.get("/patients/{patient_id}", response_model=PatientResponse)
async def get_patient(
    request: Request,
    patient_id: str,
    store: Database = Depends(get_store),
):
    company_id, _ = _identity(request)
    return _load_patient(store, company_id, patient_id)


@router.patch("/patients/{patient_id}", response_model=PatientResponse)
async def update_patient(
    request: Request,
    patient_id: str,
    body: PatientUpdate = Body(...),
    store: Database = Depends(get_store),
):
    company_id, _ = _identity(request)
    _load_patient(store, company_id, patient_id)
    updated = store.update_patient(
        company_id, patient_id, body.model_dump(mode="json", exclude_unset=True),
    )
    return updated


# --- Analyses ---


def _load_analysis(store: Database, company_id: str, analysis_id: str) -> dict:
    record = store.get_analysis(company_id, analysis_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Analysis not found.")
    return record


@router.post("/analyses/run", response_model=AnalysisResponse, status_code=201)
@limiter.limit(ANALYZE_RATE_LIMIT)
async def run_analysis(
    request: Request,
    body: RunAnalysisRequest = Body(...),
    store: Database = Depends(get_store),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Run one analysis stage. Failures return the error record's id."""
    company_id, user_id = _identity(request)
    patient = _load_patient(store, company_id, body.patient_id)
    return await pipeline.run(
        body.analysis_type, company_id, user_id, patient, body.inputs,
    )


@router.get("/analyses", response_model=AnalysisListResponse)
async def list_analyses(
    request: Request,
    patient_id: Optional[str] = Query(None),
    analysis_type: Optional[AnalysisTypeEnum] = Query(None),
    status: Optional[ReviewStatus] = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    store: Database = Depends(get_store),
):
    company_id, _ = _identity(request)
    items, total = store.list_analyses(
        company_id,
        patient_id=patient_id,
        analysis_type=analysis_type.value if analysis_type else None,
        statuses=[status.value] if status else None,
        offset=offset,
        limit=limit,
    )
    return AnalysisListResponse(items=items, total=total)


@router.get("/analyses/reviews", response_model=AnalysisListResponse)
async def list_pending_reviews(
    request: Request,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    store: Database = Depends(get_store),
):
    """Analyses waiting for a professional: completed or reviewed."""
    company_id, _ = _identity(request)
    items, total = store.list_analyses(
        company_id,
        statuses=[ReviewStatus.COMPLETED.value, ReviewStatus.REVIEWED.value],
        offset=offset,
        limit=limit,
    )
    return AnalysisListResponse(items=items, total=total)


@router.get("/analyses/{analysis_id}", response_model=AnalysisResponse)
async def get_analysis(
    request: Request,
    analysis_id: str,
    store: Database = Depends(get_store),
):
    company_id, _ = _identity(request)
    return _load_analysis(store, company_id, analysis_id)


@router.patch("/analyses/{analysis_id}", response_model=AnalysisResponse)
async def edit_analysis(
    request: Request,
    analysis_id: str,
    body: ContentEditRequest = Body(...),
    store: Database = Depends(get_store),
):
    company_id, _ = _identity(request)
    try:
        return edit_content(store, company_id, analysis_id, body.analysis)
    except AnalysisNotFound:
        raise HTTPException(status_code=404, detail="Analysis not found.")
    except MalformedResponse as e:
        # An invalid edit is the client's fault, not the provider's.
        raise HTTPException(status_code=422, detail=e.message)


@router.post("/analyses/{analysis_id}/review", response_model=AnalysisResponse)
async def review_analysis(
    request: Request,
    analysis_id: str,
    body: ReviewRequest = Body(...),
    store: Database = Depends(get_store),
):
    company_id, user_id = _identity(request)
    try:
        return annotate(store, company_id, analysis_id, user_id, body.notes)
    except AnalysisNotFound:
        raise HTTPException(status_code=404, detail="Analysis not found.")


@router.post("/analyses/{analysis_id}/decision", response_model=AnalysisResponse)
async def decide_analysis(
    request: Request,
    analysis_id: str,
    body: DecisionRequest = Body(...),
    store: Database = Depends(get_store),
):
    company_id, user_id = _identity(request)
    try:
        return decide(store, company_id, analysis_id, user_id, body.approved, body.notes)
    except AnalysisNotFound:
        raise HTTPException(status_code=404, detail="Analysis not found.")


# --- Delivery ---


@router.post("/delivery/plans/{analysis_id}/deliver", response_model=AnalysisResponse)
async def deliver_treatment_plan(
    request: Request,
    analysis_id: str,
    body: DeliveryRequest = Body(...),
    store: Database = Depends(get_store),
):
    company_id, user_id = _identity(request)
    try:
        return deliver_plan(
            store, company_id, analysis_id, user_id, body.method, body.message,
        )
    except AnalysisNotFound:
        raise HTTPException(status_code=404, detail="Analysis not found.")
    except NotDeliverable as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- RAG ---


def _require_retriever(retriever: Optional[Retriever]) -> Retriever:
    if retriever is None:
        raise ConfigurationError(
            "Knowledge base requires an OpenAI API key for embeddings",
            missing=["openai_api_key"],
        )
    return retriever


@router.post("/rag/documents", response_model=RagDocumentResponse, status_code=201)
async def upload_rag_document(
    request: Request,
    body: RagDocumentCreate = Body(...),
    retriever: Optional[Retriever] = Depends(get_retriever),
):
    company_id, user_id = _identity(request)
    retriever = _require_retriever(retriever)
    return await retriever.index_document(
        company_id=company_id,
        name=body.name,
        content=body.content,
        category=body.category,
        created_by=user_id,
    )


@router.get("/rag/documents", response_model=list[RagDocumentResponse])
async def list_rag_documents(
    request: Request,
    category: Optional[str] = Query(None),
    store: Database = Depends(get_store),
):
    company_id, _ = _identity(request)
    return store.list_rag_documents(company_id, category=category)


@router.post("/rag/search", response_model=RagSearchResponse)
async def search_rag(
    request: Request,
    body: RagSearchRequest = Body(...),
    retriever: Optional[Retriever] = Depends(get_retriever),
):
    company_id, _ = _identity(request)
    retriever = _require_retriever(retriever)
    snippets = await retriever.search(
        body.query,
        company_id=company_id,
        category=body.category,
        limit=body.limit,
        score_threshold=body.threshold,
    )
    return RagSearchResponse(
        query=body.query,
        results=[
            RagSnippetResponse(
                content=s.content, score=s.score,
                source_id=s.source_id, source_name=s.source_name,
            )
            for s in snippets
        ],
    )
