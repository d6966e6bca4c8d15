# tests/conftest.py
from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

from dental_clinic import crud, models, schemas
from dental_clinic.database import make_engine, create_tables


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def staff_user(db):
    return crud.create_user(db, schemas.UserCreate(
        username="carmen", password="secret", full_name="Dr. Carmen Rodriguez",
        email="carmen@example.com", role=models.UserRole.staff,
    ))


@pytest.fixture
def patient_user(db):
    return crud.create_user(db, schemas.UserCreate(
        username="ana", password="secret", full_name="Ana Perez", email="ana@example.com",
    ))


@pytest.fixture
def patient(db, patient_user):
    return crud.create_patient(db, schemas.PatientCreate(user_id=patient_user.id, allergies="Latex"))


@pytest.fixture
def treatment(db):
    return crud.create_treatment(db, schemas.TreatmentCreate(name="Teeth whitening", default_duration=60))


@pytest.fixture
def patient_treatment(db, patient, treatment):
    return crud.create_patient_treatment(db, schemas.PatientTreatmentCreate(
        patient_id=patient.id, treatment_id=treatment.id, start_date=datetime(2024, 3, 1, 9, 0),
    ))
