from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Dentist

SAMPLE_DENTISTS = [
    ("Ana Souza", "CRO-SP 12345", "Ortodontia", "ana.souza@clinica.com.br"),
    ("Carlos Lima", "CRO-SP 67890", "Endodontia", "carlos.lima@clinica.com.br"),
]


def seed_base(s: Session) -> int:
    """
    Load the sample dentists (idempotent, keyed by license number).
    Returns how many rows were added.
    """
    added = 0
    for name, license_number, specialty, email in SAMPLE_DENTISTS:
        exists = s.execute(select(Dentist.id).where(Dentist.license_number == license_number)).first()
        if exists is None:
            s.add(Dentist(name=name, license_number=license_number, specialty=specialty, email=email))
            added += 1
    s.flush()
    return added
