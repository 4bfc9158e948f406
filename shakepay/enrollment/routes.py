"""Enrollment REST routes: register, list and remove payees.

Changes made here only reach sessions that connect afterwards; a running
session keeps the snapshot it took at connect time.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from .store import WALLET_ADDRESS_RE, EnrollmentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/enroll", tags=["enrollment"])


class EnrollRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    wallet_address: str
    photos: list[str] = Field(..., min_length=1)

    @field_validator("wallet_address")
    @classmethod
    def _check_wallet(cls, value: str) -> str:
        if not WALLET_ADDRESS_RE.match(value):
            raise ValueError("wallet_address must be 0x followed by 40 hex characters")
        return value


def _store(request: Request) -> EnrollmentStore:
    return request.app.state.enrollment


@router.get("")
async def list_people(request: Request) -> dict:
    people = await asyncio.to_thread(_store(request).snapshot)
    return {"success": True, "count": len(people), "people": [p.to_public_dict() for p in people]}


@router.post("", status_code=201)
async def enroll_person(body: EnrollRequest, request: Request) -> dict:
    candidate = await asyncio.to_thread(
        _store(request).create, body.name, body.wallet_address, body.photos
    )
    return {"success": True, "person": candidate.to_public_dict()}


@router.get("/{candidate_id}")
async def get_person(candidate_id: str, request: Request) -> dict:
    person = await asyncio.to_thread(_store(request).get, candidate_id)
    if person is None:
        raise HTTPException(status_code=404, detail="Person not found")
    return {"success": True, "person": person.to_public_dict()}


@router.delete("/{candidate_id}")
async def delete_person(candidate_id: str, request: Request) -> dict:
    removed = await asyncio.to_thread(_store(request).delete, candidate_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Person not found")
    return {"success": True}
