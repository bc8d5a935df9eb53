"""
Payroll API routes.

Recipient management, the transaction log and manual payroll runs.
Manual runs enter through the scheduler, so they never overlap a
scheduled run.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from payroll.api.schemas import (
    RecipientCreate,
    RecipientOut,
    RecipientUpdate,
    RunPayrollResponse,
    TransactionOut,
)
from payroll.core.payroll import PayrollService
from payroll.core.run import RunStatus
from payroll.core.scheduler import PayrollScheduler
from payroll.state.database import Database

router = APIRouter(prefix="/api")


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_service(request: Request) -> PayrollService:
    return request.app.state.service


def get_scheduler(request: Request) -> PayrollScheduler:
    return request.app.state.scheduler


@router.get("/health")
async def health():
    return {"status": "ok"}


# -------------------------------------------------------------------
# Recipients
# -------------------------------------------------------------------

@router.get("/recipients", response_model=List[RecipientOut])
async def list_recipients(db: Database = Depends(get_database)):
    return await db.list_recipients()


@router.post("/recipients", response_model=RecipientOut, status_code=status.HTTP_201_CREATED)
async def create_recipient(body: RecipientCreate, db: Database = Depends(get_database)):
    return await db.create_recipient(
        address=body.address,
        amount=body.amount_lovelace,
        active=body.active,
    )


@router.put("/recipients/{recipient_id}", response_model=RecipientOut)
async def update_recipient(
    recipient_id: int,
    body: RecipientUpdate,
    db: Database = Depends(get_database),
):
    """Update the fields present in the body; omitted fields are unchanged."""
    record = await db.update_recipient(recipient_id, body.to_fields())
    if record is None:
        raise HTTPException(status_code=404, detail="Recipient not found")
    return record


@router.delete("/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recipient(recipient_id: int, db: Database = Depends(get_database)):
    if not await db.delete_recipient(recipient_id):
        raise HTTPException(status_code=404, detail="Recipient not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -------------------------------------------------------------------
# Payroll
# -------------------------------------------------------------------

@router.post("/run-payroll", response_model=RunPayrollResponse)
async def run_payroll(scheduler: PayrollScheduler = Depends(get_scheduler)):
    """
    Run payroll now.

    Returns 409 while another run is in flight. A failed run is reported
    with status 500 and the same body shape.
    """
    run = await scheduler.trigger("api")
    if run is None:
        raise HTTPException(status_code=409, detail="A payroll run is already in progress")

    response = RunPayrollResponse.from_run(run)
    if run.status == RunStatus.FAILED:
        return JSONResponse(status_code=500, content=response.model_dump())
    return response


@router.get("/transactions", response_model=List[TransactionOut])
async def list_transactions(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Database = Depends(get_database),
):
    return await db.list_transactions(limit=limit)


@router.get("/status")
async def get_status(
    request: Request,
    service: PayrollService = Depends(get_service),
    scheduler: PayrollScheduler = Depends(get_scheduler),
):
    config = request.app.state.config
    return {
        "network": config.network.value,
        "node_provider": config.node_provider.value,
        "funding_address": service.funding_address,
        "scheduler": scheduler.get_stats(),
    }
