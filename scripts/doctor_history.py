#!/usr/bin/env python3
"""CLI for viewing every patient a doctor has ever reached."""
from __future__ import annotations

import argparse
import json

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session

from caregate.app.domain.schemas import HistoryOut
from caregate.app.services.history import HistoryStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show a doctor's patient relationship history")
    parser.add_argument("doctor_id")
    parser.add_argument("--database-url", default="sqlite:///./caregate.db")
    parser.add_argument("--json", action="store_true")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    engine = create_engine(args.database_url, future=True)
    SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False)
    with SessionLocal() as db:
        rows = [HistoryOut.model_validate(row) for row in HistoryStore(db).list_for_doctor(args.doctor_id)]
    if args.json:
        print(json.dumps([row.model_dump(mode="json") for row in rows], indent=2, ensure_ascii=False))
    else:
        print(f"Doctor: {args.doctor_id} | Patients: {len(rows)}")
        for row in rows:
            state = "active" if row.has_active_access else "revoked"
            revoked = f" (revoked {row.access_revoked_at:%Y-%m-%d})" if row.access_revoked_at else ""
            print(f"  {row.patient_id}  {row.full_name}  {row.hospital_code}/{row.department_code}  {state}{revoked}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
