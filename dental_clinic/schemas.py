# dental_clinic/schemas.py
import re
from datetime import datetime, date
from typing import Any, Dict, List, Mapping, Optional, Type, Union

import structlog
from pydantic import (
    BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr,
    ValidationError as PydanticValidationError, field_validator,
)
from pydantic.alias_generators import to_camel
from email_validator import EmailNotValidError, validate_email

from .models import AppointmentStatus, ImageCategory, StepStatus, TreatmentStatus, UserRole

logger = structlog.get_logger(__name__)

# ISO-8601 shapes accepted from the wire; timestamps need a time part, dates must not have one
_ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:\d{2})?$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def check_timestamp(value: Any) -> Any:
    """Accept a datetime or an ISO-8601 date-time string; never a number or a bare date."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str) and _ISO_TIMESTAMP.match(value):
        return value
    raise ValueError("must be a datetime or an ISO-8601 date-time string (YYYY-MM-DDTHH:MM[:SS])")


def check_calendar_date(value: Any) -> Any:
    """Accept a date or an ISO-8601 YYYY-MM-DD string; never a number or a date-time."""
    if value is None:
        return value
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str) and _ISO_DATE.match(value):
        return value
    raise ValueError("must be a date or an ISO-8601 date string (YYYY-MM-DD)")


class ValidationError(ValueError):
    """Raised when an insertion payload is missing a field or carries a wrongly typed value."""

    def __init__(self, entity: str, errors: List[Dict[str, str]]):
        self.entity = entity
        self.errors = errors
        super().__init__(
            f"Invalid {entity} payload: "
            + "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        )

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.errors]

    @classmethod
    def from_pydantic(cls, entity: str, exc: PydanticValidationError) -> "ValidationError":
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "__root__",
                "message": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ]
        return cls(entity, errors)


# --- Base Schemas ---
class BaseSchema(BaseModel):
    """Wire names are camelCase; snake_case attribute names are accepted too."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        extra="ignore",
    )


class InsertSchema(BaseSchema):
    """Write-shape: creatable fields only. Server-assigned keys fall into extra="ignore"."""
    __entity__ = "record"


# --- User Schemas ---
class UserCreate(InsertSchema):
    __entity__ = "user"

    username: StrictStr = Field(..., min_length=1, max_length=50)
    password: StrictStr = Field(..., min_length=1)
    full_name: StrictStr = Field(..., min_length=1, max_length=255)
    email: StrictStr = Field(..., max_length=255)
    phone: Optional[StrictStr] = Field(None, max_length=30)
    address: Optional[StrictStr] = None
    profile_image: Optional[StrictStr] = Field(None, max_length=255)
    role: UserRole = UserRole.patient

    @field_validator("email")
    @classmethod
    def validate_email_address(cls, v):
        # Checked only; the address is stored exactly as sent
        try:
            validate_email(v, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError(str(exc)) from exc
        return v


class UserResponse(BaseSchema):
    id: int
    username: str
    full_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None
    role: UserRole
    created_at: Optional[datetime] = None


# --- Patient Schemas ---
class PatientCreate(InsertSchema):
    __entity__ = "patient"

    user_id: StrictInt
    date_of_birth: Optional[date] = None
    gender: Optional[StrictStr] = Field(None, max_length=20)
    allergies: Optional[StrictStr] = None
    current_medication: Optional[StrictStr] = None
    medical_conditions: Optional[StrictStr] = None
    insurance: Optional[StrictStr] = Field(None, max_length=100)
    occupation: Optional[StrictStr] = Field(None, max_length=100)
    notes: Optional[StrictStr] = None

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def validate_date_of_birth(cls, v):
        return check_calendar_date(v)


class PatientProfileCreate(PatientCreate):
    """Patient profile submitted together with a new account; user_id is assigned on registration."""
    user_id: Optional[StrictInt] = None


class PatientResponse(BaseSchema):
    id: int
    user_id: int
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    allergies: Optional[str] = None
    current_medication: Optional[str] = None
    medical_conditions: Optional[str] = None
    insurance: Optional[str] = None
    occupation: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


# --- Treatment Schemas ---
class TreatmentCreate(InsertSchema):
    __entity__ = "treatment"

    name: StrictStr = Field(..., min_length=1, max_length=255)
    description: Optional[StrictStr] = None
    default_duration: StrictInt = Field(30, gt=0)


class TreatmentResponse(BaseSchema):
    id: int
    name: str
    description: Optional[str] = None
    default_duration: int
    created_at: Optional[datetime] = None


# --- Patient Treatment Schemas ---
class PatientTreatmentCreate(InsertSchema):
    __entity__ = "patient_treatment"

    patient_id: StrictInt
    treatment_id: StrictInt
    status: TreatmentStatus = TreatmentStatus.active
    start_date: datetime
    end_date: Optional[datetime] = None
    notes: Optional[StrictStr] = None
    progress: StrictInt = Field(0, ge=0, le=100)
    phase: Optional[StrictStr] = Field(None, max_length=100)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def validate_timestamps(cls, v):
        return check_timestamp(v)


class ProgressUpdate(BaseSchema):
    __entity__ = "patient_treatment"

    progress: StrictInt = Field(..., ge=0, le=100)


class TreatmentStatusUpdate(BaseSchema):
    __entity__ = "patient_treatment"

    status: TreatmentStatus


class PatientTreatmentResponse(BaseSchema):
    id: int
    patient_id: int
    treatment_id: int
    status: TreatmentStatus
    start_date: datetime
    end_date: Optional[datetime] = None
    notes: Optional[str] = None
    progress: int
    phase: Optional[str] = None
    created_at: Optional[datetime] = None


# --- Treatment Step Schemas ---
class TreatmentStepCreate(InsertSchema):
    __entity__ = "treatment_step"

    patient_treatment_id: StrictInt
    name: StrictStr = Field(..., min_length=1, max_length=255)
    description: Optional[StrictStr] = None
    status: StepStatus = StepStatus.pending
    date: Optional[datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v):
        return check_timestamp(v)


class StepStatusUpdate(BaseSchema):
    __entity__ = "treatment_step"

    status: StepStatus


class TreatmentStepResponse(BaseSchema):
    id: int
    patient_treatment_id: int
    name: str
    description: Optional[str] = None
    status: StepStatus
    date: Optional[datetime] = None
    created_at: Optional[datetime] = None


# --- Appointment Schemas ---
class AppointmentCreate(InsertSchema):
    __entity__ = "appointment"

    patient_id: StrictInt
    staff_id: Optional[StrictInt] = None
    treatment_id: Optional[StrictInt] = None
    date: datetime
    duration: StrictInt = Field(30, gt=0)  # minutes
    status: AppointmentStatus = AppointmentStatus.pending
    notes: Optional[StrictStr] = None

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v):
        return check_timestamp(v)


class AppointmentStatusUpdate(BaseSchema):
    __entity__ = "appointment"

    status: AppointmentStatus


class AppointmentResponse(BaseSchema):
    id: int
    patient_id: int
    staff_id: Optional[int] = None
    treatment_id: Optional[int] = None
    date: datetime
    duration: int
    status: AppointmentStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


# --- Image Schemas ---
class ImageCreate(InsertSchema):
    __entity__ = "image"

    patient_id: StrictInt
    treatment_id: Optional[StrictInt] = None
    filename: StrictStr = Field(..., min_length=1, max_length=255)
    original_name: StrictStr = Field(..., min_length=1, max_length=255)
    type: StrictStr = Field(..., min_length=1, max_length=100)
    category: Optional[ImageCategory] = None
    uploaded_by_id: Optional[StrictInt] = None
    is_visible: StrictBool = True
    notes: Optional[StrictStr] = None


class ImageResponse(BaseSchema):
    id: int
    patient_id: int
    treatment_id: Optional[int] = None
    filename: str
    original_name: str
    type: str
    category: Optional[ImageCategory] = None
    uploaded_by_id: Optional[int] = None
    is_visible: bool
    notes: Optional[str] = None
    uploaded_at: Optional[datetime] = None


# --- Registration ---
class RegisterPatient(BaseSchema):
    """Account plus patient profile created in one step."""
    user: UserCreate
    profile: PatientProfileCreate = Field(default_factory=PatientProfileCreate)


# --- Insertion Validators ---
def _entity_name(schema: Type[BaseSchema]) -> str:
    return getattr(schema, "__entity__", schema.__name__)


INSERT_SCHEMAS: Dict[str, Type[InsertSchema]] = {
    _entity_name(schema): schema
    for schema in (
        UserCreate, PatientCreate, TreatmentCreate, PatientTreatmentCreate,
        TreatmentStepCreate, AppointmentCreate, ImageCreate,
    )
}


def _schema_for(entity: Union[str, Type[BaseSchema]]) -> Type[BaseSchema]:
    if isinstance(entity, type) and issubclass(entity, BaseSchema):
        return entity
    try:
        return INSERT_SCHEMAS[entity]
    except (KeyError, TypeError):
        raise KeyError(f"No insertion validator for entity {entity!r}") from None


def parse_insert(entity: Union[str, Type[BaseSchema]], payload: Any) -> BaseSchema:
    """Validate an untrusted payload against an entity's write-shape and return the model."""
    schema = _schema_for(entity)
    if not isinstance(payload, Mapping):
        raise ValidationError(_entity_name(schema), [{
            "field": "__root__",
            "message": f"Expected an object, got {type(payload).__name__}",
            "type": "model_type",
        }])
    try:
        return schema.model_validate(dict(payload))
    except PydanticValidationError as exc:
        error = ValidationError.from_pydantic(_entity_name(schema), exc)
        logger.debug("insert_payload_rejected", entity=_entity_name(schema), fields=error.fields)
        raise error from exc


def validate_insert(entity: Union[str, Type[InsertSchema]], payload: Any) -> Dict[str, Any]:
    """
    Insertion Validator: returns only the creatable fields the caller supplied,
    keyed by their wire names. Defaults are not added to the record.
    """
    return parse_insert(entity, payload).model_dump(by_alias=True, exclude_unset=True)


def serialize_record(entity: Union[str, Type[InsertSchema]], record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Re-serialize a validated record to JSON-compatible values.
    Timestamps and dates that arrived as ISO strings are written back as sent.
    """
    model = parse_insert(entity, record)
    data = model.model_dump(mode="json", by_alias=True, exclude_unset=True)
    for name, field in type(model).model_fields.items():
        key = field.alias or name
        if key not in data or not isinstance(getattr(model, name), date):
            continue
        raw = record[key] if key in record else record.get(name)
        if isinstance(raw, str):
            data[key] = raw
    return data
