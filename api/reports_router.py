"""
Reports API Router: aggregation and stored custom reports.

Endpoints:
- GET /reports/aggregate — totals grouped by kind (or another dimension)
- GET /reports/custom — stored reports the caller can read
- POST /reports/custom — store a report
- GET /reports/custom/{report_id}
- PUT /reports/custom/{report_id}
- DELETE /reports/custom/{report_id}
- POST /reports/custom/{report_id}/run — execute a stored report
"""

import logging
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import get_services, require_principal
from household.principals import AuthContext
from household.reports import ReportFilter
from household.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    report_config: dict[str, Any] = Field(
        default_factory=dict, description='{"group_by": "kind", "filters": {...}}'
    )
    is_public: bool = False
    owner_id: str | None = None


class ReportUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    report_config: dict[str, Any] | None = None
    is_public: bool | None = None


@router.get("/aggregate")
def aggregate(
    group_by: str = "kind",
    start_date: str | None = None,
    end_date: str | None = None,
    month: int | None = None,
    year: int | None = None,
    kind: str | None = None,
    counterparty: str | None = None,
    entered_by: str | None = None,
    paid: bool | None = True,
    include_optional: bool = False,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    """
    Sum entry amounts over the caller's readable set.

    Only paid, non-optional entries count unless the query says otherwise.
    Rows come back highest total first.
    """
    filters = ReportFilter(
        start_date=start_date,
        end_date=end_date,
        counterparty=counterparty,
        entered_by=entered_by,
        kind=kind,
        paid=paid,
        optional=include_optional or None,
        month=month,
        year=year,
    )
    rows = services.reports.aggregate(ctx, filters, group_by=group_by)
    return {
        "group_by": group_by,
        "results": [r.to_dict() for r in rows],
        "total": float(sum((r.total for r in rows), Decimal("0.00"))),
    }


@router.get("/custom")
def list_reports(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return [r.to_dict() for r in services.reports.list_reports(ctx)]


@router.post("/custom", status_code=201)
def create_report(
    body: ReportCreate,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    report = services.reports.create_report(
        ctx,
        body.name,
        description=body.description,
        report_config=body.report_config,
        is_public=body.is_public,
        owner_id=body.owner_id,
    )
    return report.to_dict()


@router.get("/custom/{report_id}")
def get_report(report_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return services.reports.get_report(ctx, report_id).to_dict()


@router.put("/custom/{report_id}")
def update_report(
    report_id: str,
    body: ReportUpdate,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    report = services.reports.update_report(
        ctx,
        report_id,
        name=body.name,
        description=body.description,
        report_config=body.report_config,
        is_public=body.is_public,
    )
    return report.to_dict()


@router.delete("/custom/{report_id}")
def delete_report(
    report_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)
):
    services.reports.delete_report(ctx, report_id)
    return {"success": True, "id": report_id}


@router.post("/custom/{report_id}/run")
def run_report(report_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return services.reports.run_report(ctx, report_id)
