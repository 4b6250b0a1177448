"""
api/routes/contacts.py -- Contacts owned by the authenticated user.

Routes:
  POST   /api/contacts       -- create; company_id, if set, must be caller-owned
  GET    /api/contacts       -- list caller's contacts (?company_id= filter)
  GET    /api/contacts/{id}  -- one contact, 403 if not owned
  DELETE /api/contacts/{id}  -- delete, 403 if not owned

A contact may only point at a company the caller owns; otherwise any user
could attach records to, or enumerate through, someone else's company id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import ContactCreate, ContactResponse
from auth.dependencies import current_user_id, require_user_id
from auth.errors import NotOwnedError
from auth.ownership import OwnableTable
from auth.service import AuthService
from crm.models import Contact
from crm.store import CRMStore

router = APIRouter(dependencies=[Depends(require_user_id)])


@router.post("/contacts", response_model=ContactResponse, status_code=201)
def create_contact(
    request: Request,
    body: ContactCreate,
    user_id: int = Depends(current_user_id),
) -> ContactResponse:
    auth: AuthService = request.app.state.auth
    crm: CRMStore = request.app.state.crm
    if body.company_id is not None:
        auth.guard.assert_owned(OwnableTable.COMPANIES, body.company_id, user_id)
    contact_id = crm.create_contact(Contact(user_id=user_id, **body.model_dump()))
    return ContactResponse.from_contact(crm.get_contact(contact_id, user_id))


@router.get("/contacts", response_model=list[ContactResponse])
def list_contacts(
    request: Request,
    company_id: int | None = None,
    user_id: int = Depends(current_user_id),
) -> list[ContactResponse]:
    auth: AuthService = request.app.state.auth
    crm: CRMStore = request.app.state.crm
    if company_id is not None:
        auth.guard.assert_owned(OwnableTable.COMPANIES, company_id, user_id)
    return [ContactResponse.from_contact(c) for c in crm.list_contacts(user_id, company_id=company_id)]


@router.get("/contacts/{contact_id}", response_model=ContactResponse)
def get_contact(request: Request, contact_id: int, user_id: int = Depends(current_user_id)) -> ContactResponse:
    auth: AuthService = request.app.state.auth
    crm: CRMStore = request.app.state.crm
    auth.guard.assert_owned(OwnableTable.CONTACTS, contact_id, user_id)
    contact = crm.get_contact(contact_id, user_id)
    if contact is None:
        raise NotOwnedError("Resource not found or access denied.")
    return ContactResponse.from_contact(contact)


@router.delete("/contacts/{contact_id}", status_code=204)
def delete_contact(request: Request, contact_id: int, user_id: int = Depends(current_user_id)) -> Response:
    auth: AuthService = request.app.state.auth
    crm: CRMStore = request.app.state.crm
    auth.guard.assert_owned(OwnableTable.CONTACTS, contact_id, user_id)
    crm.delete_contact(contact_id, user_id)
    return Response(status_code=204)
