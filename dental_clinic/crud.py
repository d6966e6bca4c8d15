# dental_clinic/crud.py - persistence boundary for the clinic records
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, List, Type

import structlog
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from . import models, schemas

logger = structlog.get_logger(__name__)


class CRUDError(Exception):
    pass


class ReferentialIntegrityError(CRUDError):
    """A foreign key value does not point to an existing row."""

    def __init__(self, field: str, target: str, value: int):
        self.field = field
        self.target = target
        self.value = value
        super().__init__(f"{field}={value} does not reference an existing {target}")


# --- Helpers ---
def _require(db: Session, model: Type[models.Base], field: str, value: Optional[int]):
    """Return the referenced row, or raise if a non-null foreign key dangles."""
    if value is None:
        return None
    row = db.get(model, value)
    if row is None:
        raise ReferentialIntegrityError(field, model.__tablename__, value)
    return row


def _save(db: Session, obj, action: str):
    try:
        db.add(obj)
        db.commit()
        db.refresh(obj)
    except IntegrityError as e:
        db.rollback()
        logger.error("integrity_error", action=action, error=str(e.orig))
        raise CRUDError(f"{action} failed due to data constraints") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("database_error", action=action, error=str(e))
        raise CRUDError(f"Database error: {str(e)}") from e
    logger.info(action, id=obj.id)
    return obj


def _commit(db: Session, obj, action: str):
    try:
        db.commit()
        db.refresh(obj)
    except IntegrityError as e:
        db.rollback()
        logger.error("integrity_error", action=action, error=str(e.orig))
        raise CRUDError(f"{action} failed due to data constraints") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise CRUDError(f"Database error: {str(e)}") from e
    logger.info(action, id=obj.id)
    return obj


def _apply_full_record(obj, data: schemas.InsertSchema):
    # Full-record update: every creatable field is rewritten, defaults included
    for key, value in data.model_dump().items():
        setattr(obj, key, value)


# ==================== USERS ====================

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.username == username).first()


def get_users(db: Session, skip: int = 0, limit: int = 100, role: Optional[models.UserRole] = None) -> List[models.User]:
    query = db.query(models.User)
    if role is not None:
        query = query.filter(models.User.role == role)
    return query.order_by(models.User.username).offset(skip).limit(limit).all()


def _check_user_unique(db: Session, user: schemas.UserCreate, exclude_id: Optional[int] = None):
    query = db.query(models.User)
    if exclude_id is not None:
        query = query.filter(models.User.id != exclude_id)
    if query.filter(models.User.username == user.username).first():
        raise CRUDError("Username already exists")
    if query.filter(models.User.email == user.email).first():
        raise CRUDError("Email already exists")


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    _check_user_unique(db, user)
    db_user = models.User(**user.model_dump())
    return _save(db, db_user, "user_created")


def update_user(db: Session, user_id: int, user: schemas.UserCreate) -> Optional[models.User]:
    db_user = get_user(db, user_id)
    if not db_user:
        return None
    _check_user_unique(db, user, exclude_id=user_id)
    _apply_full_record(db_user, user)
    return _commit(db, db_user, "user_updated")


# ==================== PATIENTS ====================

def get_patient(db: Session, patient_id: int) -> Optional[models.Patient]:
    return db.get(models.Patient, patient_id)


def get_patient_by_user_id(db: Session, user_id: int) -> Optional[models.Patient]:
    return db.query(models.Patient).filter(models.Patient.user_id == user_id).first()


def get_patients(db: Session, skip: int = 0, limit: int = 200) -> List[models.Patient]:
    return db.query(models.Patient).order_by(models.Patient.id).offset(skip).limit(limit).all()


def create_patient(db: Session, patient: schemas.PatientCreate) -> models.Patient:
    _require(db, models.User, "userId", patient.user_id)
    if get_patient_by_user_id(db, patient.user_id):
        raise CRUDError(f"User {patient.user_id} already has a patient profile")
    db_patient = models.Patient(**patient.model_dump())
    return _save(db, db_patient, "patient_created")


def update_patient(db: Session, patient_id: int, patient: schemas.PatientCreate) -> Optional[models.Patient]:
    db_patient = get_patient(db, patient_id)
    if not db_patient:
        return None
    _require(db, models.User, "userId", patient.user_id)
    existing = get_patient_by_user_id(db, patient.user_id)
    if existing and existing.id != patient_id:
        raise CRUDError(f"User {patient.user_id} already has a patient profile")
    _apply_full_record(db_patient, patient)
    return _commit(db, db_patient, "patient_updated")


def register_patient(db: Session, registration: schemas.RegisterPatient) -> models.User:
    """Create a patient account and its profile in a single transaction."""
    user_in = registration.user
    if user_in.role != models.UserRole.patient:
        raise CRUDError("Only patient accounts can be registered with a patient profile")
    _check_user_unique(db, user_in)
    try:
        db_user = models.User(**user_in.model_dump())
        db.add(db_user)
        db.flush()
        profile = registration.profile.model_dump()
        profile["user_id"] = db_user.id
        db.add(models.Patient(**profile))
        db.commit()
        db.refresh(db_user)
    except IntegrityError as e:
        db.rollback()
        raise CRUDError("Registration failed due to data constraints") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise CRUDError(f"Database error: {str(e)}") from e
    logger.info("patient_registered", user_id=db_user.id, username=db_user.username)
    return db_user


# ==================== TREATMENTS ====================

def get_treatment(db: Session, treatment_id: int) -> Optional[models.Treatment]:
    return db.get(models.Treatment, treatment_id)


def get_treatment_by_name(db: Session, name: str) -> Optional[models.Treatment]:
    return db.query(models.Treatment).filter(models.Treatment.name == name).first()


def get_treatments(db: Session) -> List[models.Treatment]:
    return db.query(models.Treatment).order_by(models.Treatment.name).all()


def create_treatment(db: Session, treatment: schemas.TreatmentCreate) -> models.Treatment:
    return _save(db, models.Treatment(**treatment.model_dump()), "treatment_created")


# ==================== PATIENT TREATMENTS ====================

def get_patient_treatment(db: Session, patient_treatment_id: int) -> Optional[models.PatientTreatment]:
    return db.get(models.PatientTreatment, patient_treatment_id)


def get_patient_treatments(db: Session, patient_id: int, status: Optional[models.TreatmentStatus] = None) -> List[models.PatientTreatment]:
    query = db.query(models.PatientTreatment).filter(models.PatientTreatment.patient_id == patient_id)
    if status is not None:
        query = query.filter(models.PatientTreatment.status == status)
    return query.order_by(models.PatientTreatment.start_date.desc()).all()


def _check_patient_treatment_refs(db: Session, data: schemas.PatientTreatmentCreate):
    _require(db, models.Patient, "patientId", data.patient_id)
    _require(db, models.Treatment, "treatmentId", data.treatment_id)


def create_patient_treatment(db: Session, data: schemas.PatientTreatmentCreate) -> models.PatientTreatment:
    _check_patient_treatment_refs(db, data)
    return _save(db, models.PatientTreatment(**data.model_dump()), "patient_treatment_created")


def update_patient_treatment(db: Session, patient_treatment_id: int, data: schemas.PatientTreatmentCreate) -> Optional[models.PatientTreatment]:
    db_item = get_patient_treatment(db, patient_treatment_id)
    if not db_item:
        return None
    _check_patient_treatment_refs(db, data)
    _apply_full_record(db_item, data)
    return _commit(db, db_item, "patient_treatment_updated")


def update_patient_treatment_progress(db: Session, patient_treatment_id: int, progress: int) -> Optional[models.PatientTreatment]:
    """Set progress; values outside 0..100 are rejected, never clamped."""
    update = schemas.parse_insert(schemas.ProgressUpdate, {"progress": progress})
    db_item = get_patient_treatment(db, patient_treatment_id)
    if not db_item:
        return None
    db_item.progress = update.progress
    return _commit(db, db_item, "patient_treatment_progress_updated")


def update_patient_treatment_status(db: Session, patient_treatment_id: int, status: models.TreatmentStatus) -> Optional[models.PatientTreatment]:
    update = schemas.parse_insert(schemas.TreatmentStatusUpdate, {"status": status})
    db_item = get_patient_treatment(db, patient_treatment_id)
    if not db_item:
        return None
    db_item.status = update.status
    return _commit(db, db_item, "patient_treatment_status_updated")


# ==================== TREATMENT STEPS ====================

def get_treatment_step(db: Session, step_id: int) -> Optional[models.TreatmentStep]:
    return db.get(models.TreatmentStep, step_id)


def get_treatment_steps(db: Session, patient_treatment_id: int) -> List[models.TreatmentStep]:
    return (
        db.query(models.TreatmentStep)
        .filter(models.TreatmentStep.patient_treatment_id == patient_treatment_id)
        .order_by(models.TreatmentStep.id)
        .all()
    )


def create_treatment_step(db: Session, step: schemas.TreatmentStepCreate) -> models.TreatmentStep:
    _require(db, models.PatientTreatment, "patientTreatmentId", step.patient_treatment_id)
    return _save(db, models.TreatmentStep(**step.model_dump()), "treatment_step_created")


def update_treatment_step_status(db: Session, step_id: int, status: models.StepStatus) -> Optional[models.TreatmentStep]:
    """Completing a step stamps its date unless one was already recorded."""
    update = schemas.parse_insert(schemas.StepStatusUpdate, {"status": status})
    step = get_treatment_step(db, step_id)
    if not step:
        return None
    step.status = update.status
    if update.status == models.StepStatus.completed and step.date is None:
        step.date = datetime.now(timezone.utc)
    return _commit(db, step, "treatment_step_status_updated")


# ==================== APPOINTMENTS ====================

def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    return db.get(models.Appointment, appointment_id)


def get_appointments(db: Session, skip: int = 0, limit: int = 100, status: Optional[models.AppointmentStatus] = None) -> List[models.Appointment]:
    query = db.query(models.Appointment)
    if status is not None:
        query = query.filter(models.Appointment.status == status)
    return query.order_by(models.Appointment.date).offset(skip).limit(limit).all()


def get_patient_appointments(db: Session, patient_id: int) -> List[models.Appointment]:
    return (
        db.query(models.Appointment)
        .filter(models.Appointment.patient_id == patient_id)
        .order_by(models.Appointment.date)
        .all()
    )


def get_staff_appointments(db: Session, staff_id: int) -> List[models.Appointment]:
    return (
        db.query(models.Appointment)
        .filter(models.Appointment.staff_id == staff_id)
        .order_by(models.Appointment.date)
        .all()
    )


def get_appointments_for_day(db: Session, day: date) -> List[models.Appointment]:
    """Appointments on a calendar day, earliest first."""
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    return (
        db.query(models.Appointment)
        .filter(models.Appointment.date >= start, models.Appointment.date < end)
        .order_by(models.Appointment.date, models.Appointment.id)
        .all()
    )


def create_appointment(db: Session, appointment: schemas.AppointmentCreate) -> models.Appointment:
    """Overlapping appointments for the same staff member are accepted."""
    _require(db, models.Patient, "patientId", appointment.patient_id)
    _require(db, models.Treatment, "treatmentId", appointment.treatment_id)
    staff = _require(db, models.User, "staffId", appointment.staff_id)
    if staff is not None and staff.role not in models.STAFF_ROLES:
        raise CRUDError(f"User {staff.id} has role '{staff.role.value}' and cannot be assigned to appointments")
    return _save(db, models.Appointment(**appointment.model_dump()), "appointment_created")


def update_appointment_status(db: Session, appointment_id: int, status: models.AppointmentStatus) -> Optional[models.Appointment]:
    update = schemas.parse_insert(schemas.AppointmentStatusUpdate, {"status": status})
    db_appointment = get_appointment(db, appointment_id)
    if not db_appointment:
        return None
    db_appointment.status = update.status
    return _commit(db, db_appointment, "appointment_status_updated")


# ==================== IMAGES ====================

def get_image(db: Session, image_id: int) -> Optional[models.Image]:
    return db.get(models.Image, image_id)


def get_patient_images(db: Session, patient_id: int, visible_only: bool = False) -> List[models.Image]:
    """Images for a patient; visible_only restricts to patient-facing ones."""
    query = db.query(models.Image).filter(models.Image.patient_id == patient_id)
    if visible_only:
        query = query.filter(models.Image.is_visible.is_(True))
    return query.order_by(models.Image.uploaded_at.desc(), models.Image.id.desc()).all()


def get_treatment_images(db: Session, treatment_id: int) -> List[models.Image]:
    return (
        db.query(models.Image)
        .filter(models.Image.treatment_id == treatment_id)
        .order_by(models.Image.id)
        .all()
    )


def create_image(db: Session, image: schemas.ImageCreate) -> models.Image:
    _require(db, models.Patient, "patientId", image.patient_id)
    _require(db, models.Treatment, "treatmentId", image.treatment_id)
    _require(db, models.User, "uploadedById", image.uploaded_by_id)
    if db.query(models.Image).filter(models.Image.filename == image.filename).first():
        raise CRUDError(f"An image named '{image.filename}' already exists")
    return _save(db, models.Image(**image.model_dump()), "image_created")


def set_image_visibility(db: Session, image_id: int, is_visible: bool) -> Optional[models.Image]:
    db_image = get_image(db, image_id)
    if not db_image:
        return None
    db_image.is_visible = bool(is_visible)
    return _commit(db, db_image, "image_visibility_updated")


def delete_image(db: Session, image_id: int) -> bool:
    db_image = get_image(db, image_id)
    if not db_image:
        return False
    try:
        db.delete(db_image)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise CRUDError(f"Database error: {str(e)}") from e
    logger.info("image_deleted", id=image_id)
    return True
