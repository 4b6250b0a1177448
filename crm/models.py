"""
crm/models.py -- Domain dataclasses for owned CRM records.

Pure data containers. Every record carries user_id, the owning account;
crm/store.py is the only writer of that field.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Company:
    """A customer organisation. id is None before the record is written."""

    user_id: int
    name: str
    id: int | None = None
    website: str | None = None
    industry: str | None = None
    address: str | None = None
    phone_number: str | None = None
    pipeline_stage: str = "Lead"
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Contact:
    """A person, optionally attached to one of the owner's companies."""

    user_id: int
    first_name: str
    last_name: str
    id: int | None = None
    company_id: int | None = None
    email: str | None = None
    phone_number: str | None = None
    job_title: str | None = None
    notes: str | None = None
    pipeline_stage: str = "Lead"
    created_at: str = ""
    updated_at: str = ""
