from fastapi import APIRouter, Depends
from sqlmodel import Session
from ..db import get_session
from ..roster import incomplete_entries, resolve_roster

router = APIRouter()

@router.get("/{lease_id}/roster")
def lease_roster(lease_id: int, session: Session = Depends(get_session)):
    roster = resolve_roster(session, lease_id)
    incomplete = incomplete_entries(roster)
    return {
        "leaseId": lease_id,
        "signable": not incomplete,
        "incomplete": incomplete,
        "tenants": [
            {**entry.to_candidate(), "position": entry.position, "missing": entry.missing_fields()}
            for entry in roster
        ],
    }
