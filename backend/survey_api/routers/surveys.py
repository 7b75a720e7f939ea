# survey_api/routers/surveys.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from survey_api.services.identifiers import ZERO_ID, generate_token, is_valid_id, new_id, parse_id, utc_now_iso
from survey_api.services.store import DocumentStore, DuplicateKeyError, StoreError, get_store
from survey_api.services.validation import first_error, validate_question, validate_question_type

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/surveys", tags=["surveys"])

SURVEYS = "surveys"
RESPONSES = "responses"

# Fresh tokens tried before giving up on a create
TOKEN_MAX_ATTEMPTS = 5

INVALID_SURVEY_ID = "Invalid Survey Id"
SURVEY_NOT_EXIST = "the survey does not exist, please provide correct survey id"


# ---------- Models ----------

class QuestionIn(BaseModel):
    id: Optional[str] = None
    question_title: Optional[str] = ""
    question_type: Optional[str] = ""
    answers: Optional[List[str]] = None


class SurveyIn(BaseModel):
    """Create/update body. Server-owned fields (id, token, timestamps) are ignored."""
    title: Optional[str] = ""
    questions: Optional[List[QuestionIn]] = None


class Question(BaseModel):
    id: str
    question_title: str
    question_type: str
    answers: List[str] = Field(default_factory=list)


class Survey(BaseModel):
    id: str
    token: str
    created_at: str
    updated_at: str
    title: str
    questions: List[Question] = Field(default_factory=list)


class SurveySummary(BaseModel):
    token: str
    title: str


class Message(BaseModel):
    message: str


# ---------- Helpers ----------

def _load_survey(doc: dict) -> Survey:
    try:
        return Survey.model_validate(doc)
    except ValidationError as e:
        raise StoreError(f"Unexpected survey document {doc.get('id')!r}: {e}") from e


def _pagination(page: Optional[str], limit: Optional[str]) -> tuple[int, int]:
    """
    (skip, limit) for the list endpoint. Anything unexpected turns
    pagination off and returns every survey: (0, 0).
    """
    try:
        p = int(page)
        l = int(limit)
    except (TypeError, ValueError):
        return 0, 0
    if p < 1 or l < 1 or p > l:
        return 0, 0
    return p * l - l, l


async def _read_update(request: Request) -> SurveyIn:
    """Decode an update body; only done once the survey is known to exist."""
    try:
        return SurveyIn.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid request body")


def require_survey_id(survey_id: str) -> str:
    sid = parse_id(survey_id)
    if sid is None:
        raise HTTPException(status_code=400, detail=INVALID_SURVEY_ID)
    return sid


def ensure_survey_exists(store: DocumentStore, survey_id: str) -> None:
    """400 when no survey has this id."""
    if store.find_one(SURVEYS, {"id": survey_id}) is None:
        logger.info("survey %s does not exist", survey_id)
        raise HTTPException(status_code=400, detail=SURVEY_NOT_EXIST)


# ---------- Routes ----------

@router.get("", response_model=List[SurveySummary])
def list_surveys(page: Optional[str] = None, limit: Optional[str] = None, store: DocumentStore = Depends(get_store)):
    """
    Token and title of stored surveys, paged when page/limit are sane
    (1 <= page <= limit), otherwise all of them.
    """
    logger.info("get surveys list")
    skip, lim = _pagination(page, limit)
    docs = store.find(SURVEYS, {}, skip=skip, limit=lim)
    try:
        return [SurveySummary.model_validate(d) for d in docs]
    except ValidationError as e:
        raise StoreError(f"Unexpected survey document: {e}") from e


@router.post("", status_code=201, response_model=Survey)
def create_survey(payload: SurveyIn, store: DocumentStore = Depends(get_store)):
    logger.info("create survey")
    if not payload.title:
        raise HTTPException(status_code=400, detail="Title is required, please make sure the title field is filled")

    questions = payload.questions or []
    error = first_error(validate_question_type(q.question_type or "", q.answers) for q in questions)
    if error:
        logger.info("rejected survey: %s", error)
        raise HTTPException(status_code=400, detail=error)

    now = utc_now_iso()
    survey = Survey(
        id=new_id(),
        token=generate_token(),
        created_at=now,
        updated_at=now,
        title=payload.title,
        questions=[
            Question(
                id=new_id(),
                question_title=q.question_title or "",
                question_type=q.question_type or "",
                answers=q.answers or [],
            )
            for q in questions
        ],
    )

    for attempt in range(1, TOKEN_MAX_ATTEMPTS + 1):
        try:
            store.insert_one(SURVEYS, survey.model_dump())
            break
        except DuplicateKeyError:
            logger.warning("token %s already taken (attempt %d/%d)", survey.token, attempt, TOKEN_MAX_ATTEMPTS)
            survey.token = generate_token()
    else:
        raise HTTPException(status_code=500, detail="Failed to create survey, could not allocate a unique token")

    return survey


@router.get("/token/{token}", response_model=Survey)
def get_survey_by_token(token: str, store: DocumentStore = Depends(get_store)):
    logger.info("get survey by token")
    doc = store.find_one(SURVEYS, {"token": token})
    if doc is None:
        logger.info("no survey found for token %s", token)
        raise HTTPException(status_code=404, detail="No survey found")
    return _load_survey(doc)


@router.get("/{survey_id}", response_model=Survey)
def get_survey(survey_id: str, store: DocumentStore = Depends(get_store)):
    logger.info("get survey by id")
    sid = require_survey_id(survey_id)
    doc = store.find_one(SURVEYS, {"id": sid})
    if doc is None:
        raise HTTPException(status_code=404, detail="No survey found")
    return _load_survey(doc)


@router.put("/{survey_id}", response_model=Message)
async def update_survey(survey_id: str, request: Request, store: DocumentStore = Depends(get_store)):
    """
    Partial update: a non-empty title and/or a non-empty question list
    replace the stored ones. Questions without an id get a fresh one.
    """
    logger.info("edit survey")
    sid = require_survey_id(survey_id)
    ensure_survey_exists(store, sid)
    payload = await _read_update(request)

    updates = {}
    if payload.title:
        updates["title"] = payload.title

    if payload.questions:
        error = first_error(
            validate_question(q.question_title or "", q.question_type or "", q.answers)
            for q in payload.questions
        )
        if error:
            logger.info("rejected survey update: %s", error)
            raise HTTPException(status_code=400, detail=error)

        questions = []
        for q in payload.questions:
            qid = q.id
            if not qid or qid == ZERO_ID:
                qid = new_id()
            elif not is_valid_id(qid):
                raise HTTPException(status_code=400, detail="Invalid Question Id")
            questions.append(
                Question(
                    id=qid.lower(),
                    question_title=q.question_title,
                    question_type=q.question_type,
                    answers=q.answers or [],
                ).model_dump()
            )
        updates["questions"] = questions

    if not updates:
        raise HTTPException(status_code=400, detail="No updates")

    updates["updated_at"] = utc_now_iso()
    if store.update_one(SURVEYS, {"id": sid}, updates) == 0:
        raise HTTPException(status_code=404, detail="No survey found")
    return {"message": "survey updated"}


@router.delete("/{survey_id}", response_model=Message)
def delete_survey(survey_id: str, store: DocumentStore = Depends(get_store)):
    """Delete the survey, then every response that belongs to it."""
    logger.info("delete survey")
    sid = require_survey_id(survey_id)

    if store.delete_one(SURVEYS, {"id": sid}) == 0:
        raise HTTPException(status_code=500, detail="Failed to delete survey, survey might have already removed")

    try:
        removed = store.delete_many(RESPONSES, {"survey_id": sid})
    except StoreError:
        logger.exception("survey %s deleted but its responses were not", sid)
        raise HTTPException(
            status_code=500,
            detail=f"Survey deleted but its responses were not, retry with DELETE /responses/{sid}",
        )
    logger.info("deleted survey %s and %d responses", sid, removed)
    return {"message": "survey deleted"}
