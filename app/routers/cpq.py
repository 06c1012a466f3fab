"""
OpsGuard - CPQ Router

API endpoints for quote costing. Every endpoint returns a summary
recomputed from the quote's current rows.

The full cost breakdown is for the internal proposal editor; client-facing
callers use /price, which exposes the sale price only.
"""

import uuid

from fastapi import APIRouter, Depends, status

from app.dependencies import get_quote_service
from app.schemas.cpq import (
    PositionCreateRequest,
    PositionCreateResponse,
    PositionOut,
    QuoteClientPriceOut,
    QuoteCostSummaryOut,
)
from app.services.quote_service import QuoteService, summary_response


router = APIRouter()


# ===========================================
# COSTS
# ===========================================

@router.get(
    "/quotes/{quote_id}/costs",
    response_model=QuoteCostSummaryOut,
    summary="Quote cost summary",
)
async def get_quote_costs(
    quote_id: uuid.UUID,
    service: QuoteService = Depends(get_quote_service),
):
    summary = await service.compute_costs(quote_id)
    return summary_response(quote_id, summary)


@router.get(
    "/quotes/{quote_id}/price",
    response_model=QuoteClientPriceOut,
    summary="Client-facing quote price",
)
async def get_quote_price(
    quote_id: uuid.UUID,
    service: QuoteService = Depends(get_quote_service),
):
    summary = await service.compute_costs(quote_id)
    return QuoteClientPriceOut(
        quote_id=quote_id,
        sale_price=summary.sale_price,
        monthly_total=summary.monthly_total,
    )


@router.post(
    "/quotes/{quote_id}/recalculate",
    response_model=QuoteCostSummaryOut,
    summary="Re-price positions and store quote totals",
)
async def recalculate_quote(
    quote_id: uuid.UUID,
    service: QuoteService = Depends(get_quote_service),
):
    summary = await service.recalculate(quote_id)
    return summary_response(quote_id, summary)


# ===========================================
# POSITIONS
# ===========================================

@router.post(
    "/quotes/{quote_id}/positions",
    response_model=PositionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a position to a quote",
)
async def add_position(
    quote_id: uuid.UUID,
    data: PositionCreateRequest,
    service: QuoteService = Depends(get_quote_service),
):
    position, source, summary = await service.add_position(quote_id, data)
    out = PositionOut.model_validate(position)
    out.salary_source = source
    return PositionCreateResponse(position=out, summary=summary_response(quote_id, summary))


@router.delete(
    "/quotes/{quote_id}/positions/{position_id}",
    response_model=QuoteCostSummaryOut,
    summary="Remove a position from a quote",
)
async def remove_position(
    quote_id: uuid.UUID,
    position_id: uuid.UUID,
    service: QuoteService = Depends(get_quote_service),
):
    summary = await service.remove_position(quote_id, position_id)
    return summary_response(quote_id, summary)
