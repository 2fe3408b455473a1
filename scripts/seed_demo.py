#!/usr/bin/env python3
"""Seed CareGate DB with demo patients, doctors, records and grants."""
from __future__ import annotations

import argparse
import random

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session, SQLModel

from caregate.app.domain.models import AccessLevel, DoctorProfile, MedicalRecord, PatientProfile, RecordType
from caregate.app.domain.policy import Identity, Role
from caregate.app.domain.schemas import RecordIn
from caregate.app.services.audit import AuditTrail
from caregate.app.services.directory import PatientDirectory
from caregate.app.services.grants import GrantStore, expiry_from_now
from caregate.app.services.history import HistoryStore
from caregate.app.services.records import RecordIndex, RecordService
from caregate.app.services.requests import RequestLedger
from caregate.app.services.resolver import AccessResolver

HOSPITALS = ["MH", "CH", "SH"]
DEPARTMENTS = ["CARD", "NEUR", "ORTH"]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed DB with demo patients/doctors/records")
    parser.add_argument("--patients", type=int, default=3)
    parser.add_argument("--doctors", type=int, default=3)
    parser.add_argument("--database-url", default="sqlite:///./caregate.db")
    return parser.parse_args()


def ensure_doctor(db: Session, idx: int) -> DoctorProfile:
    doctor_id = f"doc-{idx}"
    doctor = db.get(DoctorProfile, doctor_id)
    if doctor:
        return doctor
    doctor = DoctorProfile(
        id=doctor_id,
        full_name=f"Dr. Demo {idx}",
        hospital_code=HOSPITALS[(idx - 1) % len(HOSPITALS)],
        department_code=DEPARTMENTS[(idx - 1) % len(DEPARTMENTS)],
    )
    db.add(doctor)
    db.flush()
    return doctor


def ensure_patient(db: Session, idx: int) -> PatientProfile:
    patient_id = f"pat-{idx}"
    patient = db.get(PatientProfile, patient_id)
    if patient:
        return patient
    patient = PatientProfile(
        id=patient_id,
        full_name=f"Demo Patient {idx}",
        access_code=f"{100000000000 + idx}",
        contact_no=f"+1-555-01{idx:02}",
    )
    db.add(patient)
    db.flush()
    return patient


def create_demo_records(db: Session, doctor: DoctorProfile, patient: PatientProfile) -> None:
    grants = GrantStore(db)
    grants.upsert(patient.id, doctor.id, AccessLevel.READ_WRITE, expiry_from_now(30))
    audit = AuditTrail(db)
    resolver = AccessResolver(
        patients=PatientDirectory(db),
        grants=grants,
        requests=RequestLedger(db),
        history=HistoryStore(db),
        records=RecordIndex(db),
        audit=audit,
    )
    identity = Identity(doctor.id, Role.DOCTOR, doctor.hospital_code, doctor.department_code)
    service = RecordService(db, resolver, audit)
    for record_type in random.sample(list(RecordType), 2):
        service.create(
            identity,
            RecordIn(
                patient_id=patient.id,
                record_type=record_type,
                diagnosis=f"Demo {record_type.value} finding",
                notes="Seeded for local development",
                vital_signs={"heartRate": random.randint(55, 95)},
                should_encrypt=record_type is RecordType.LAB,
            ),
        )


def main() -> int:
    args = parse_args()
    engine = create_engine(args.database_url, future=True)
    SQLModel.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False)
    with SessionLocal() as db:
        doctors = [ensure_doctor(db, idx) for idx in range(1, args.doctors + 1)]
        for idx in range(1, args.patients + 1):
            patient = ensure_patient(db, idx)
            if db.query(MedicalRecord).filter(MedicalRecord.patient_id == patient.id).first():
                continue
            create_demo_records(db, doctors[(idx - 1) % len(doctors)], patient)
        db.commit()
    print(f"Seeded {args.patients} demo patients and {args.doctors} doctors.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
