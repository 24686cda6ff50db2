from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError
from .models import Dentist, Patient

logger = logging.getLogger(__name__)


# =========================
# Patients
# =========================
def create_patient(s: Session, name: str, **fields: Any) -> Patient:
    p = Patient(name=name.strip(), **fields)
    s.add(p)
    s.flush()
    logger.info("patient %s created", p.id)
    return p


def list_patients(s: Session) -> list[Patient]:
    return list(s.scalars(select(Patient).where(Patient.active.is_(True)).order_by(Patient.name)))


def get_patient(s: Session, patient_id: int) -> Patient:
    """Active patients only: a soft-deleted patient is reported as missing."""
    p = s.get(Patient, patient_id)
    if not p or not p.active:
        raise NotFoundError("Patient not found")
    return p


def update_patient(s: Session, patient_id: int, changes: dict[str, Any]) -> Patient:
    p = get_patient(s, patient_id)
    for field, value in changes.items():
        setattr(p, field, value)
    s.flush()
    return p


def deactivate_patient(s: Session, patient_id: int) -> None:
    """Soft delete: the row and its appointments are kept."""
    p = s.get(Patient, patient_id)
    if not p:
        raise NotFoundError("Patient not found")
    p.active = False
    logger.info("patient %s deactivated", patient_id)


# =========================
# Dentists
# =========================
def _ensure_license_free(s: Session, license_number: str) -> None:
    exists = s.execute(select(Dentist.id).where(Dentist.license_number == license_number)).first()
    if exists:
        raise ConflictError("License number already registered")


def _flush_dentist(s: Session) -> None:
    # a concurrent insert can still win the race past _ensure_license_free
    try:
        s.flush()
    except IntegrityError as e:
        raise ConflictError("License number already registered") from e


def create_dentist(s: Session, name: str, license_number: str, **fields: Any) -> Dentist:
    license_number = license_number.strip()
    _ensure_license_free(s, license_number)

    d = Dentist(name=name.strip(), license_number=license_number, **fields)
    s.add(d)
    _flush_dentist(s)
    logger.info("dentist %s created (license %s)", d.id, license_number)
    return d


def list_dentists(s: Session) -> list[Dentist]:
    return list(s.scalars(select(Dentist).where(Dentist.active.is_(True)).order_by(Dentist.name)))


def get_dentist(s: Session, dentist_id: int) -> Dentist:
    d = s.get(Dentist, dentist_id)
    if not d or not d.active:
        raise NotFoundError("Dentist not found")
    return d


def update_dentist(s: Session, dentist_id: int, changes: dict[str, Any]) -> Dentist:
    d = get_dentist(s, dentist_id)

    new_license = changes.get("license_number")
    if new_license is not None:
        new_license = new_license.strip()
        changes = {**changes, "license_number": new_license}
        if new_license != d.license_number:
            _ensure_license_free(s, new_license)

    for field, value in changes.items():
        setattr(d, field, value)
    _flush_dentist(s)
    return d


def deactivate_dentist(s: Session, dentist_id: int) -> None:
    d = s.get(Dentist, dentist_id)
    if not d:
        raise NotFoundError("Dentist not found")
    d.active = False
    logger.info("dentist %s deactivated", dentist_id)
