# survey_api/routers/responses.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from survey_api.routers.surveys import RESPONSES, ensure_survey_exists, require_survey_id
from survey_api.services.identifiers import ZERO_ID, new_id, parse_id, utc_now_iso
from survey_api.services.store import DocumentStore, StoreError, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/responses", tags=["responses"])


# ---------- Models ----------

class ResponseInput(BaseModel):
    question_id: Optional[str] = None
    response_text: Optional[str] = ""


class Response(BaseModel):
    id: str
    user_id: str
    created_at: str
    survey_id: str
    question_id: str
    response_text: str


class PurgeResult(BaseModel):
    message: str
    deleted: int


# ---------- Helpers ----------

def _load_responses(docs: List[dict]) -> List[Response]:
    try:
        return [Response.model_validate(d) for d in docs]
    except ValidationError as e:
        raise StoreError(f"Unexpected response document: {e}") from e


# ---------- Routes ----------

@router.post("/{survey_id}", status_code=201, response_model=List[ResponseInput])
def submit_responses(survey_id: str, payload: List[ResponseInput], store: DocumentStore = Depends(get_store)):
    """
    Store one Response per entry, all sharing a fresh user_id.
    Entries are written in order; an invalid entry stops the batch with a
    400 and whatever was written before it stays.
    """
    logger.info("submit response")
    sid = require_survey_id(survey_id)
    ensure_survey_exists(store, sid)

    user_id = new_id()
    for i, entry in enumerate(payload):
        qid = parse_id(entry.question_id)
        if qid is None or qid == ZERO_ID or not entry.response_text:
            logger.info("invalid entry %d in submission for survey %s (%d already stored)", i, sid, i)
            raise HTTPException(status_code=400, detail="Invalid input from submission")

        response = Response(
            id=new_id(),
            user_id=user_id,
            created_at=utc_now_iso(),
            survey_id=sid,
            question_id=qid,
            response_text=entry.response_text,
        )
        store.insert_one(RESPONSES, response.model_dump())

    return payload


@router.get("", response_model=List[Response])
def list_responses(store: DocumentStore = Depends(get_store)):
    logger.info("get all responses")
    return _load_responses(store.find(RESPONSES))


@router.get("/{survey_id}", response_model=List[Response])
def list_survey_responses(survey_id: str, store: DocumentStore = Depends(get_store)):
    logger.info("get responses by survey id")
    sid = require_survey_id(survey_id)
    return _load_responses(store.find(RESPONSES, {"survey_id": sid}))


@router.delete("/{survey_id}", response_model=PurgeResult)
def purge_survey_responses(survey_id: str, store: DocumentStore = Depends(get_store)):
    """Remove every response of a survey. Safe to repeat."""
    logger.info("delete responses by survey id")
    sid = require_survey_id(survey_id)
    deleted = store.delete_many(RESPONSES, {"survey_id": sid})
    return {"message": "responses deleted", "deleted": deleted}
