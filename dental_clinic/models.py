# dental_clinic/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Date,
    Enum as SQLAlchemyEnum, Boolean, Index, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
import enum

# Closed value sets; the validators and the database both reject anything else
class UserRole(str, enum.Enum):
    patient = "patient"
    admin = "admin"
    staff = "staff"


class TreatmentStatus(str, enum.Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"
    completed = "completed"


class ImageCategory(str, enum.Enum):
    before = "before"
    progress = "progress"
    after = "after"


class StepStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"


# Roles allowed to be assigned to an appointment as the treating staff member
STAFF_ROLES = frozenset({UserRole.staff, UserRole.admin})


class User(Base):
    """Account for patients, clinic staff and administrators"""
    __tablename__ = "users"
    __table_args__ = (
        Index('idx_users_role', 'role'),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(30), nullable=True)
    address = Column(Text, nullable=True)
    profile_image = Column(String(255), nullable=True)
    role = Column(SQLAlchemyEnum(UserRole, name='user_role'), default=UserRole.patient, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    patient_profile = relationship("Patient", back_populates="user", uselist=False, cascade="all, delete-orphan", passive_deletes=True)
    staff_appointments = relationship("Appointment", back_populates="staff")
    uploaded_images = relationship("Image", back_populates="uploaded_by")


class Patient(Base):
    """Clinical profile attached 1:1 to a patient account"""
    __tablename__ = "patients"
    __table_args__ = (
        Index('idx_patients_dob', 'date_of_birth'),
        Index('idx_patients_created', 'created_at'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)

    # Medical information
    allergies = Column(Text, nullable=True)
    current_medication = Column(Text, nullable=True)
    medical_conditions = Column(Text, nullable=True)
    insurance = Column(String(100), nullable=True)
    occupation = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="patient_profile")
    treatments = relationship("PatientTreatment", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    appointments = relationship("Appointment", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    images = relationship("Image", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)


class Treatment(Base):
    """Catalogue entry for a procedure the clinic offers"""
    __tablename__ = "treatments"
    __table_args__ = (
        CheckConstraint('default_duration > 0', name='ck_treatments_default_duration_positive'),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    default_duration = Column(Integer, nullable=False, default=30)  # minutes
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    patient_treatments = relationship("PatientTreatment", back_populates="treatment", passive_deletes="all")


class PatientTreatment(Base):
    """A treatment course a patient is going through"""
    __tablename__ = "patient_treatments"
    __table_args__ = (
        Index('idx_patient_treatments_patient_status', 'patient_id', 'status'),
        CheckConstraint('progress >= 0 AND progress <= 100', name='ck_patient_treatments_progress_range'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    treatment_id = Column(Integer, ForeignKey("treatments.id", ondelete="RESTRICT"), nullable=False)

    status = Column(SQLAlchemyEnum(TreatmentStatus, name='treatment_status'), default=TreatmentStatus.active, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)  # expected >= start_date, not enforced
    notes = Column(Text, nullable=True)
    progress = Column(Integer, nullable=False, default=0)  # percent
    phase = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="treatments")
    treatment = relationship("Treatment", back_populates="patient_treatments")
    steps = relationship("TreatmentStep", back_populates="patient_treatment", cascade="all, delete-orphan", passive_deletes=True,
                         order_by="TreatmentStep.id")


class TreatmentStep(Base):
    """A session or milestone within a patient treatment"""
    __tablename__ = "treatment_steps"

    id = Column(Integer, primary_key=True, index=True)
    patient_treatment_id = Column(Integer, ForeignKey("patient_treatments.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLAlchemyEnum(StepStatus, name='step_status'), default=StepStatus.pending, nullable=False)
    date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    patient_treatment = relationship("PatientTreatment", back_populates="steps")


class Appointment(Base):
    """Scheduled visit; overlapping appointments for one staff member are allowed"""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_patient_date', 'patient_id', 'date'),
        Index('idx_appointments_staff_date', 'staff_id', 'date'),
        Index('idx_appointments_status_date', 'status', 'date'),
        CheckConstraint('duration > 0', name='ck_appointments_duration_positive'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    staff_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    treatment_id = Column(Integer, ForeignKey("treatments.id", ondelete="SET NULL"), nullable=True)

    date = Column(DateTime(timezone=True), nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=30)  # minutes
    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status'), default=AppointmentStatus.pending, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    staff = relationship("User", back_populates="staff_appointments")
    treatment = relationship("Treatment")


class Image(Base):
    """Metadata for an uploaded treatment photo; the file itself lives elsewhere"""
    __tablename__ = "images"
    __table_args__ = (
        Index('idx_images_patient_visible', 'patient_id', 'is_visible'),
        Index('idx_images_treatment', 'treatment_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    treatment_id = Column(Integer, ForeignKey("treatments.id", ondelete="SET NULL"), nullable=True)

    filename = Column(String(255), unique=True, nullable=False)
    original_name = Column(String(255), nullable=False)
    type = Column(String(100), nullable=False)  # MIME type
    category = Column(SQLAlchemyEnum(ImageCategory, name='image_category'), nullable=True)

    uploaded_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_visible = Column(Boolean, nullable=False, default=True)  # shown to the patient
    notes = Column(Text, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="images")
    treatment = relationship("Treatment")
    uploaded_by = relationship("User", back_populates="uploaded_images")
