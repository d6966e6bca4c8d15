# Demo data for a fresh database. Rows that already exist are left alone.
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.orm import Session

from . import crud, models
from .schemas import (
    AppointmentCreate, ImageCreate, PatientProfileCreate, PatientTreatmentCreate,
    RegisterPatient, TreatmentCreate, TreatmentStepCreate, UserCreate,
)

logger = structlog.get_logger(__name__)

TREATMENTS = [
    TreatmentCreate(name="Dental cleaning", description="Professional cleaning to remove plaque and tartar", default_duration=30),
    TreatmentCreate(name="Teeth whitening", description="Light-activated gel treatment to lighten tooth colour", default_duration=60),
    TreatmentCreate(name="Orthodontics", description="Correcting tooth position with braces or aligners", default_duration=45),
]

STAFF = [
    UserCreate(username="admin", password="change-me", full_name="System Administrator",
               email="admin@clinic.example.com", role=models.UserRole.admin),
    UserCreate(username="carmen", password="change-me", full_name="Dr. Carmen Rodriguez",
               email="carmen@clinic.example.com", role=models.UserRole.staff),
]

DEMO_PATIENT = RegisterPatient(
    user=UserCreate(username="ana", password="change-me", full_name="Ana Perez",
                    email="ana.perez@example.com", phone="+34 678 901 234", role=models.UserRole.patient),
    profile=PatientProfileCreate(
        date_of_birth="1985-05-15", gender="female", allergies="Penicillin, latex",
        medical_conditions="Hypertension", current_medication="Enalapril 10mg daily",
        insurance="Sanitas", occupation="Teacher",
        notes="Sensitive teeth. Prefers local anaesthesia for invasive procedures.",
    ),
)


def create_initial_data(db: Session, now: datetime = None) -> dict:
    """Insert the demo catalogue, staff accounts and one patient with an ongoing treatment."""
    now = now or datetime.now(timezone.utc)
    created = {"treatments": 0, "users": 0, "patients": 0}

    treatments = {}
    for treatment_in in TREATMENTS:
        treatment = crud.get_treatment_by_name(db, treatment_in.name)
        if not treatment:
            treatment = crud.create_treatment(db, treatment_in)
            created["treatments"] += 1
        treatments[treatment.name] = treatment

    staff = {}
    for user_in in STAFF:
        user = crud.get_user_by_username(db, user_in.username)
        if not user:
            user = crud.create_user(db, user_in)
            created["users"] += 1
        staff[user.username] = user

    if crud.get_user_by_username(db, DEMO_PATIENT.user.username):
        logger.info("initial_data_present", **created)
        return created

    patient_user = crud.register_patient(db, DEMO_PATIENT)
    patient = crud.get_patient_by_user_id(db, patient_user.id)
    created["users"] += 1
    created["patients"] += 1

    whitening = treatments["Teeth whitening"]
    doctor = staff["carmen"]
    course = crud.create_patient_treatment(db, PatientTreatmentCreate(
        patient_id=patient.id, treatment_id=whitening.id, status=models.TreatmentStatus.active,
        start_date=now - timedelta(days=30), end_date=now + timedelta(days=30),
        progress=60, phase="Second session",
        notes="Responding well. Avoid staining foods during treatment.",
    ))

    for name, days_ago, status in (
        ("First session", 30, models.StepStatus.completed),
        ("Second session", 7, models.StepStatus.completed),
        ("Third session", 0, models.StepStatus.pending),
    ):
        crud.create_treatment_step(db, TreatmentStepCreate(
            patient_treatment_id=course.id, name=name, status=status,
            date=now - timedelta(days=days_ago),
        ))

    crud.create_appointment(db, AppointmentCreate(
        patient_id=patient.id, staff_id=doctor.id, treatment_id=whitening.id,
        date=now, duration=whitening.default_duration, status=models.AppointmentStatus.confirmed,
        notes="Third whitening session",
    ))

    for filename, category in (("before-treatment.jpg", models.ImageCategory.before),
                               ("progress-treatment.jpg", models.ImageCategory.progress)):
        crud.create_image(db, ImageCreate(
            patient_id=patient.id, treatment_id=whitening.id, filename=filename,
            original_name=filename, type="image/jpeg", category=category,
            uploaded_by_id=doctor.id,
        ))

    logger.info("initial_data_created", **created)
    return created
