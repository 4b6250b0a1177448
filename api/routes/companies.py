"""
api/routes/companies.py -- Companies owned by the authenticated user.

Routes:
  POST   /api/companies       -- create (owner = caller)
  GET    /api/companies       -- list caller's companies
  GET    /api/companies/{id}  -- one company, 403 if not owned
  DELETE /api/companies/{id}  -- delete, 403 if not owned

Every by-id route runs the ownership guard before touching the row. A
missing row and another user's row both produce the same 403.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import CompanyCreate, CompanyResponse
from auth.dependencies import current_user_id, require_user_id
from auth.errors import NotOwnedError
from auth.ownership import OwnableTable
from auth.service import AuthService
from crm.models import Company
from crm.store import CRMStore

router = APIRouter(dependencies=[Depends(require_user_id)])


@router.post("/companies", response_model=CompanyResponse, status_code=201)
def create_company(
    request: Request,
    body: CompanyCreate,
    user_id: int = Depends(current_user_id),
) -> CompanyResponse:
    crm: CRMStore = request.app.state.crm
    company_id = crm.create_company(Company(user_id=user_id, **body.model_dump()))
    return CompanyResponse.from_company(crm.get_company(company_id, user_id))


@router.get("/companies", response_model=list[CompanyResponse])
def list_companies(request: Request, user_id: int = Depends(current_user_id)) -> list[CompanyResponse]:
    crm: CRMStore = request.app.state.crm
    return [CompanyResponse.from_company(c) for c in crm.list_companies(user_id)]


@router.get("/companies/{company_id}", response_model=CompanyResponse)
def get_company(request: Request, company_id: int, user_id: int = Depends(current_user_id)) -> CompanyResponse:
    auth: AuthService = request.app.state.auth
    crm: CRMStore = request.app.state.crm
    auth.guard.assert_owned(OwnableTable.COMPANIES, company_id, user_id)
    company = crm.get_company(company_id, user_id)
    if company is None:
        # Deleted between the guard and the read.
        raise NotOwnedError("Resource not found or access denied.")
    return CompanyResponse.from_company(company)


@router.delete("/companies/{company_id}", status_code=204)
def delete_company(request: Request, company_id: int, user_id: int = Depends(current_user_id)) -> Response:
    auth: AuthService = request.app.state.auth
    crm: CRMStore = request.app.state.crm
    auth.guard.assert_owned(OwnableTable.COMPANIES, company_id, user_id)
    crm.delete_company(company_id, user_id)
    return Response(status_code=204)
