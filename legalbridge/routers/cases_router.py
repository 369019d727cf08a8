from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from legalbridge.dependencies import get_completion_client, get_records
from legalbridge.schemas import CasePayload
from legalbridge.services.completion import CompletionClient, assistant_message, pending_question
from legalbridge.services.document_store import LegalRecords, RecordNotFoundError

router = APIRouter(prefix="/api", tags=["cases"])
logger = structlog.get_logger()


def _parse_case(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid case format")
    try:
        return CasePayload.model_validate(body).to_record()
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid case format") from exc


@router.get("/cases")
async def list_cases(records: LegalRecords = Depends(get_records)) -> list[dict[str, Any]]:
    try:
        return await records.get_cases()
    except Exception as exc:  # noqa: BLE001
        logger.error("cases_read_failed", error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to read cases data") from exc


async def _reply_to_pending(
    target: dict[str, Any],
    records: LegalRecords,
    completion: CompletionClient,
) -> list[dict[str, Any]]:
    messages = target["messages"]
    question = pending_question(messages) or ""
    try:
        answer = await completion.complete(messages, question)
        if answer:
            messages.append(assistant_message(answer))
            await records.update_case(target["id"], {**target, "messages": messages})
        else:
            logger.warning("completion_without_answer", case_id=target.get("id"))
    except Exception as exc:  # noqa: BLE001
        logger.error("completion_failed", case_id=target.get("id"), error=str(exc))
    return messages


@router.post("/cases", status_code=201)
async def upsert_case(
    body: Any = Body(None),
    records: LegalRecords = Depends(get_records),
    completion: CompletionClient | None = Depends(get_completion_client),
):
    case = _parse_case(body)
    logger.info("case_received", case_id=case.get("id"))

    try:
        cases = await records.get_cases()
        case_id = case.get("id")
        existing_index = next(
            (index for index, row in enumerate(cases) if case_id and row.get("id") == case_id),
            None,
        )
        if existing_index is not None:
            saved = await records.update_case(case_id, case)
            cases[existing_index] = saved
        else:
            saved = await records.create_case(case)
            cases.insert(0, saved)
    except Exception as exc:  # noqa: BLE001
        logger.error("case_save_failed", case_id=case.get("id"), error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to save case") from exc

    if completion is None or len(cases) < 2:
        return saved
    target = cases[1]
    if pending_question(target.get("messages")) is None:
        return saved
    messages = await _reply_to_pending(target, records, completion)
    return {"messages": messages}


@router.put("/cases/{case_id}")
async def update_case(
    case_id: str,
    body: Any = Body(None),
    records: LegalRecords = Depends(get_records),
) -> dict[str, Any]:
    updates = _parse_case(body)
    updates.pop("id", None)
    logger.info("case_update_requested", case_id=case_id)
    try:
        return await records.update_case(case_id, updates)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Case not found") from exc
    except Exception as exc:  # noqa: BLE001
        logger.error("case_update_failed", case_id=case_id, error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to update case") from exc


@router.get("/graph", tags=["graph"])
async def get_graph(records: LegalRecords = Depends(get_records)) -> dict[str, Any]:
    try:
        return await records.get_graph_data()
    except Exception as exc:  # noqa: BLE001
        logger.error("graph_read_failed", error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to read graph data") from exc
