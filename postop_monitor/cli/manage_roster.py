import argparse
import asyncio
import getpass
from typing import Optional

from fastapi_users import exceptions
from fastapi_users_db_sqlalchemy import SQLAlchemyUserDatabase

from postop_monitor.auth import ClinicianManager
from postop_monitor.db import async_session_maker, init_db
from postop_monitor.models.clinician import Clinician
from postop_monitor.records import Patient, RiskTier
from postop_monitor.schemas import ClinicianCreate
from postop_monitor.store.sql import SqlRecordStore

RISK_CHOICES = [tier.value for tier in RiskTier]


async def create_clinician(email: str, password: str, superuser: bool) -> None:
    await init_db()
    async with async_session_maker() as session:
        clinician_db = SQLAlchemyUserDatabase(session, Clinician)
        manager = ClinicianManager(clinician_db)
        try:
            await manager.get_by_email(email)
        except exceptions.UserNotExists:
            pass
        else:
            raise SystemExit(f"Clinician with email {email!r} already exists")

        clinician = await manager.create(
            ClinicianCreate(email=email, password=password, is_superuser=superuser),
            safe=True,
        )
        print(f"Created clinician {email} ({clinician.id})")


async def _clinician_id(email: str) -> str:
    async with async_session_maker() as session:
        manager = ClinicianManager(SQLAlchemyUserDatabase(session, Clinician))
        try:
            clinician = await manager.get_by_email(email)
        except exceptions.UserNotExists as exc:
            raise SystemExit(f"Clinician with email {email!r} does not exist") from exc
        return str(clinician.id)


async def add_patient(
    name: str,
    risk: str,
    clinician_email: Optional[str],
    age: Optional[int],
    diagnosis: Optional[str],
) -> None:
    await init_db()
    clinician_id = await _clinician_id(clinician_email) if clinician_email else None
    store = SqlRecordStore(async_session_maker)
    patient = await store.save_patient(
        Patient(
            name=name,
            risk=risk,
            age=age,
            diagnosis=diagnosis,
            assigned_clinician_id=clinician_id,
        )
    )
    print(f"Added patient {name} ({patient.id})")


async def set_risk(patient_id: str, risk: str) -> None:
    store = SqlRecordStore(async_session_maker)
    patient = await store.get_patient(patient_id)
    if patient is None:
        raise SystemExit(f"Patient {patient_id!r} does not exist")
    await store.save_patient(patient.model_copy(update={"risk": risk}))
    print(f"Risk for {patient.name} set to {risk}")


def _prompt_password(provided: Optional[str]) -> str:
    if provided:
        return provided
    pwd = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    if pwd != confirm:
        raise SystemExit("Passwords do not match")
    return pwd


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage clinicians and their patient rosters")
    subparsers = parser.add_subparsers(dest="command", required=True)

    clinician_parser = subparsers.add_parser("create-clinician", help="Create a clinician login")
    clinician_parser.add_argument("email", help="Email for the clinician")
    clinician_parser.add_argument(
        "--password",
        help="Password for the clinician; if omitted you will be prompted",
    )
    clinician_parser.add_argument(
        "--superuser",
        action="store_true",
        help="Create the clinician with superuser privileges",
    )

    patient_parser = subparsers.add_parser("add-patient", help="Register a patient")
    patient_parser.add_argument("name", help="Patient's full name")
    patient_parser.add_argument("--risk", choices=RISK_CHOICES, default="medium")
    patient_parser.add_argument("--age", type=int)
    patient_parser.add_argument("--diagnosis")
    patient_parser.add_argument(
        "--clinician-email",
        help="Assign the patient to this clinician's roster",
    )

    risk_parser = subparsers.add_parser("set-risk", help="Update a patient's risk tier")
    risk_parser.add_argument("patient_id")
    risk_parser.add_argument("risk", choices=RISK_CHOICES)

    args = parser.parse_args()

    if args.command == "create-clinician":
        password = _prompt_password(args.password)
        asyncio.run(create_clinician(args.email, password, bool(args.superuser)))
    elif args.command == "add-patient":
        asyncio.run(
            add_patient(args.name, args.risk, args.clinician_email, args.age, args.diagnosis)
        )
    elif args.command == "set-risk":
        asyncio.run(set_risk(args.patient_id, args.risk))


if __name__ == "__main__":
    main()
