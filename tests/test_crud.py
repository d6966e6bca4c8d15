# tests/test_crud.py
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from dental_clinic import crud, models, schemas
from dental_clinic.crud import CRUDError, ReferentialIntegrityError
from dental_clinic.schemas import ValidationError, parse_insert


def _appointment(patient_id, when, **extra):
    return schemas.AppointmentCreate(patient_id=patient_id, date=when, **extra)


# ==================== USERS ====================

def test_create_user_applies_defaults(db):
    user = crud.create_user(db, parse_insert("user", {
        "username": "luis", "password": "pw", "fullName": "Luis Gomez", "email": "luis@example.com",
        "id": 500, "createdAt": "1999-01-01T00:00:00",
    }))
    assert user.id != 500
    assert user.role == models.UserRole.patient
    assert user.created_at is not None
    assert user.created_at.year != 1999


def test_duplicate_username_is_rejected(db, patient_user):
    with pytest.raises(CRUDError, match="Username already exists"):
        crud.create_user(db, schemas.UserCreate(
            username="ana", password="pw", full_name="Other Ana", email="other@example.com",
        ))


def test_duplicate_email_is_rejected(db, patient_user):
    with pytest.raises(CRUDError, match="Email already exists"):
        crud.create_user(db, schemas.UserCreate(
            username="ana2", password="pw", full_name="Other Ana", email="ana@example.com",
        ))


def test_username_uniqueness_is_enforced_by_the_database(db, patient_user):
    db.add(models.User(username="ana", password="pw", full_name="Dup", email="dup@example.com"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_update_user_rewrites_the_full_record(db, patient_user):
    updated = crud.update_user(db, patient_user.id, schemas.UserCreate(
        username="ana", password="new", full_name="Ana Perez Ruiz", email="ana@example.com",
    ))
    assert updated.full_name == "Ana Perez Ruiz"
    assert updated.password == "new"
    assert updated.phone is None


def test_update_missing_user_returns_none(db):
    assert crud.update_user(db, 404, schemas.UserCreate(
        username="x", password="x", full_name="X", email="x@example.com",
    )) is None


def test_get_users_filters_by_role(db, staff_user, patient_user):
    assert [u.username for u in crud.get_users(db, role=models.UserRole.staff)] == ["carmen"]
    assert [u.username for u in crud.get_users(db)] == ["ana", "carmen"]


# ==================== PATIENTS ====================

def test_patient_with_missing_user_is_rejected(db):
    with pytest.raises(ReferentialIntegrityError) as exc_info:
        crud.create_patient(db, schemas.PatientCreate(user_id=999))
    assert exc_info.value.field == "userId"
    assert exc_info.value.value == 999
    assert crud.get_patients(db) == []


def test_database_rejects_dangling_patient_user(db):
    db.add(models.Patient(user_id=999))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_second_profile_for_user_is_rejected(db, patient):
    with pytest.raises(CRUDError, match="already has a patient profile"):
        crud.create_patient(db, schemas.PatientCreate(user_id=patient.user_id))


def test_get_patient_by_user_id(db, patient, patient_user):
    assert crud.get_patient_by_user_id(db, patient_user.id).id == patient.id
    assert crud.get_patient_by_user_id(db, 12345) is None


def test_update_patient_clears_unsupplied_fields(db, patient):
    updated = crud.update_patient(db, patient.id, schemas.PatientCreate(
        user_id=patient.user_id, medical_conditions="Hypertension",
    ))
    assert updated.medical_conditions == "Hypertension"
    assert updated.allergies is None


def test_register_patient_creates_account_and_profile(db):
    user = crud.register_patient(db, parse_insert(schemas.RegisterPatient, {
        "user": {"username": "marta", "password": "pw", "fullName": "Marta Diaz", "email": "marta@example.com"},
        "profile": {"dateOfBirth": "1990-02-03", "allergies": "Penicillin"},
    }))
    profile = crud.get_patient_by_user_id(db, user.id)
    assert profile.date_of_birth == date(1990, 2, 3)
    assert profile.allergies == "Penicillin"


def test_register_patient_refuses_staff_role(db):
    registration = schemas.RegisterPatient(user=schemas.UserCreate(
        username="boss", password="pw", full_name="Boss", email="boss@example.com", role=models.UserRole.admin,
    ))
    with pytest.raises(CRUDError):
        crud.register_patient(db, registration)
    assert crud.get_user_by_username(db, "boss") is None


def test_deleting_user_cascades_to_profile(db, patient, patient_user):
    db.delete(patient_user)
    db.commit()
    db.expire_all()
    assert crud.get_patients(db) == []


# ==================== PATIENT TREATMENTS ====================

def test_patient_treatment_defaults(patient_treatment):
    assert patient_treatment.status == models.TreatmentStatus.active
    assert patient_treatment.progress == 0
    assert patient_treatment.end_date is None


def test_patient_treatment_requires_existing_treatment(db, patient):
    with pytest.raises(ReferentialIntegrityError) as exc_info:
        crud.create_patient_treatment(db, schemas.PatientTreatmentCreate(
            patient_id=patient.id, treatment_id=77, start_date=datetime(2024, 1, 1),
        ))
    assert exc_info.value.field == "treatmentId"


def test_progress_update_rejects_out_of_range(db, patient_treatment):
    with pytest.raises(ValidationError):
        crud.update_patient_treatment_progress(db, patient_treatment.id, 150)
    db.refresh(patient_treatment)
    assert patient_treatment.progress == 0


def test_progress_update_is_stored(db, patient_treatment):
    updated = crud.update_patient_treatment_progress(db, patient_treatment.id, 100)
    assert updated.progress == 100


def test_database_check_constraint_on_progress(db, patient_treatment):
    patient_treatment.progress = 150
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_status_update_accepts_only_known_values(db, patient_treatment):
    updated = crud.update_patient_treatment_status(db, patient_treatment.id, "completed")
    assert updated.status == models.TreatmentStatus.completed
    with pytest.raises(ValidationError) as exc_info:
        crud.update_patient_treatment_status(db, patient_treatment.id, "paused")
    assert exc_info.value.fields == ["status"]
    assert exc_info.value.entity == "patient_treatment"
    db.refresh(patient_treatment)
    assert patient_treatment.status == models.TreatmentStatus.completed


def test_get_patient_treatments_filters_by_status(db, patient, treatment, patient_treatment):
    crud.create_patient_treatment(db, schemas.PatientTreatmentCreate(
        patient_id=patient.id, treatment_id=treatment.id, start_date=datetime(2023, 1, 1),
        status=models.TreatmentStatus.completed, progress=100,
    ))
    assert len(crud.get_patient_treatments(db, patient.id)) == 2
    active = crud.get_patient_treatments(db, patient.id, status=models.TreatmentStatus.active)
    assert [t.id for t in active] == [patient_treatment.id]


def test_treatment_in_use_cannot_be_deleted(db, treatment, patient_treatment):
    db.delete(treatment)
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_full_record_update_of_patient_treatment(db, patient_treatment):
    updated = crud.update_patient_treatment(db, patient_treatment.id, schemas.PatientTreatmentCreate(
        patient_id=patient_treatment.patient_id, treatment_id=patient_treatment.treatment_id,
        start_date=datetime(2024, 3, 1, 9, 0), progress=40, phase="Aligners",
    ))
    assert (updated.progress, updated.phase) == (40, "Aligners")


# ==================== TREATMENT STEPS ====================

def test_completing_a_step_stamps_its_date(db, patient_treatment):
    step = crud.create_treatment_step(db, schemas.TreatmentStepCreate(
        patient_treatment_id=patient_treatment.id, name="First session",
    ))
    assert step.status == models.StepStatus.pending
    assert step.date is None
    done = crud.update_treatment_step_status(db, step.id, models.StepStatus.completed)
    assert done.date is not None


def test_completing_a_dated_step_keeps_its_date(db, patient_treatment):
    when = datetime(2024, 3, 10, 11, 0)
    step = crud.create_treatment_step(db, schemas.TreatmentStepCreate(
        patient_treatment_id=patient_treatment.id, name="Second session", date=when,
    ))
    done = crud.update_treatment_step_status(db, step.id, "completed")
    assert done.date.replace(tzinfo=None) == when


def test_unknown_step_status_is_rejected(db, patient_treatment):
    step = crud.create_treatment_step(db, schemas.TreatmentStepCreate(
        patient_treatment_id=patient_treatment.id, name="Fitting",
    ))
    with pytest.raises(ValidationError) as exc_info:
        crud.update_treatment_step_status(db, step.id, "skipped")
    assert exc_info.value.fields == ["status"]
    assert exc_info.value.entity == "treatment_step"


def test_get_treatment_step(db, patient_treatment):
    step = crud.create_treatment_step(db, schemas.TreatmentStepCreate(
        patient_treatment_id=patient_treatment.id, name="Impressions",
    ))
    assert crud.get_treatment_step(db, step.id).name == "Impressions"
    assert crud.get_treatment_step(db, 999) is None
    assert crud.update_treatment_step_status(db, 999, "completed") is None


def test_steps_are_listed_in_creation_order(db, patient_treatment):
    for name in ("One", "Two", "Three"):
        crud.create_treatment_step(db, schemas.TreatmentStepCreate(
            patient_treatment_id=patient_treatment.id, name=name,
        ))
    assert [s.name for s in crud.get_treatment_steps(db, patient_treatment.id)] == ["One", "Two", "Three"]


def test_step_requires_existing_patient_treatment(db):
    with pytest.raises(ReferentialIntegrityError):
        crud.create_treatment_step(db, schemas.TreatmentStepCreate(patient_treatment_id=5, name="Orphan"))


# ==================== APPOINTMENTS ====================

def test_appointment_defaults(db, patient):
    appointment = crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1, 10, 0)))
    assert appointment.duration == 30
    assert appointment.status == models.AppointmentStatus.pending
    assert appointment.staff_id is None


def test_appointment_requires_existing_patient(db):
    with pytest.raises(ReferentialIntegrityError) as exc_info:
        crud.create_appointment(db, _appointment(42, datetime(2024, 5, 1, 10, 0)))
    assert exc_info.value.field == "patientId"


def test_appointment_staff_must_exist(db, patient):
    with pytest.raises(ReferentialIntegrityError) as exc_info:
        crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1), staff_id=321))
    assert exc_info.value.field == "staffId"


def test_appointment_staff_must_have_a_staff_role(db, patient, patient_user):
    with pytest.raises(CRUDError, match="cannot be assigned"):
        crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1), staff_id=patient_user.id))


def test_overlapping_appointments_for_same_staff_are_accepted(db, patient, staff_user):
    start = datetime(2024, 5, 1, 10, 0)
    first = crud.create_appointment(db, _appointment(patient.id, start, staff_id=staff_user.id, duration=60))
    second = crud.create_appointment(db, _appointment(
        patient.id, start + timedelta(minutes=15), staff_id=staff_user.id, duration=30,
    ))
    assert first.id != second.id
    assert len(crud.get_staff_appointments(db, staff_user.id)) == 2


def test_database_rejects_non_positive_duration(db, patient):
    db.add(models.Appointment(patient_id=patient.id, date=datetime(2024, 5, 1), duration=0))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_appointments_for_day_are_filtered_and_sorted(db, patient):
    day = date(2024, 5, 1)
    late = crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1, 16, 0)))
    crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 2, 9, 0)))
    early = crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1, 8, 30)))
    crud.create_appointment(db, _appointment(patient.id, datetime(2024, 4, 30, 23, 59)))
    assert [a.id for a in crud.get_appointments_for_day(db, day)] == [early.id, late.id]


def test_update_appointment_status(db, patient):
    appointment = crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1, 10, 0)))
    confirmed = crud.update_appointment_status(db, appointment.id, models.AppointmentStatus.confirmed)
    assert confirmed.status == models.AppointmentStatus.confirmed
    assert crud.update_appointment_status(db, 999, "cancelled") is None


def test_unknown_appointment_status_is_rejected(db, patient):
    appointment = crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1, 10, 0)))
    with pytest.raises(ValidationError) as exc_info:
        crud.update_appointment_status(db, appointment.id, "scheduled")
    assert exc_info.value.fields == ["status"]
    assert exc_info.value.entity == "appointment"
    assert crud.get_appointment(db, appointment.id).status == models.AppointmentStatus.pending


def test_deleting_staff_user_keeps_appointment(db, patient, staff_user):
    appointment = crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1), staff_id=staff_user.id))
    db.delete(staff_user)
    db.commit()
    db.refresh(appointment)
    assert appointment.staff_id is None


# ==================== IMAGES ====================

def _image(patient_id, filename, **extra):
    return schemas.ImageCreate(
        patient_id=patient_id, filename=filename, original_name=filename, type="image/jpeg", **extra,
    )


def test_image_defaults_to_visible(db, patient):
    image = crud.create_image(db, _image(patient.id, "a.jpg"))
    assert image.is_visible is True
    assert image.uploaded_at is not None
    assert image.category is None


def test_image_filename_must_be_unique(db, patient):
    crud.create_image(db, _image(patient.id, "a.jpg"))
    with pytest.raises(CRUDError, match="already exists"):
        crud.create_image(db, _image(patient.id, "a.jpg"))


def test_image_references_are_checked(db, patient):
    with pytest.raises(ReferentialIntegrityError) as exc_info:
        crud.create_image(db, _image(patient.id, "b.jpg", uploaded_by_id=404))
    assert exc_info.value.field == "uploadedById"


def test_hidden_images_are_excluded_from_patient_view(db, patient, treatment, staff_user):
    visible = crud.create_image(db, _image(patient.id, "before.jpg", category=models.ImageCategory.before,
                                           treatment_id=treatment.id, uploaded_by_id=staff_user.id))
    hidden = crud.create_image(db, _image(patient.id, "xray.jpg", is_visible=False))
    assert {i.id for i in crud.get_patient_images(db, patient.id)} == {visible.id, hidden.id}
    assert [i.id for i in crud.get_patient_images(db, patient.id, visible_only=True)] == [visible.id]
    assert [i.id for i in crud.get_treatment_images(db, treatment.id)] == [visible.id]


def test_set_visibility_and_delete(db, patient):
    image = crud.create_image(db, _image(patient.id, "c.jpg"))
    assert crud.set_image_visibility(db, image.id, False).is_visible is False
    assert crud.delete_image(db, image.id) is True
    assert crud.get_image(db, image.id) is None
    assert crud.delete_image(db, image.id) is False


def test_deleting_patient_cascades_to_related_rows(db, patient, patient_treatment):
    crud.create_appointment(db, _appointment(patient.id, datetime(2024, 5, 1)))
    crud.create_image(db, _image(patient.id, "d.jpg"))
    db.delete(patient)
    db.commit()
    db.expire_all()
    assert db.query(models.Appointment).count() == 0
    assert db.query(models.Image).count() == 0
    assert db.query(models.PatientTreatment).count() == 0
