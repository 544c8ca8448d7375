"""
Database Schemas for the Therapy Management App

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.
Relations are stored as string ids.
"""
import re
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

RoleType = Literal["superuser", "hospital", "admin", "therapist", "child"]
GenderType = Literal["male", "female", "other", "prefer-not-to-say"]
CompletionStatus = Literal["pending", "in-progress", "completed", "not-completed"]
MilestoneType = Literal["started", "quarter", "half", "three-quarters", "completed", "custom"]
MoodType = Literal["excellent", "good", "okay", "difficult", "frustrated"]
DifficultyType = Literal["easy", "medium", "hard"]
ProgressStatus = Literal["draft", "submitted", "reviewed", "approved"]
ProgramStatus = Literal["active", "paused", "completed"]

PROGRESS_STATUS_ORDER = ("draft", "submitted", "reviewed", "approved")

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")


def strip_scripts(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return _SCRIPT_RE.sub("", value.strip())


# ---------- Embedded documents ----------

class Address(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    zip_code: str = ""


class NotificationPrefs(BaseModel):
    email: bool = True
    sms: bool = False
    push: bool = True
    activity_reminders: bool = True
    progress_updates: bool = True


class UserStats(BaseModel):
    total_activities_completed: int = 0
    total_time_spent: float = 0
    average_score: float = 0
    current_streak: int = 0
    longest_streak: int = 0


class MedicalHistory(BaseModel):
    current_level: str = "beginner"
    total_activities_completed: int = 0
    total_therapy_hours: float = 0


# ---------- Collections ----------

class User(BaseModel):
    name: str = Field(..., max_length=50, description="Display name")
    email: EmailStr = Field(..., description="Unique, stored lower-case")
    password_hash: str = Field(..., description="bcrypt hash")
    role: RoleType = Field("child", description="User role")
    hospital_id: Optional[str] = Field(None, description="Hospital user managing this account")
    phone_number: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    gender: Optional[GenderType] = None
    profile_picture: str = ""
    bio: Optional[str] = Field(None, max_length=500)
    address: Address = Field(default_factory=Address)
    is_active: bool = True
    is_email_verified: bool = False
    is_phone_verified: bool = False
    children_ids: List[str] = Field(default_factory=list)
    parent_id: Optional[str] = None
    assigned_patients: List[str] = Field(default_factory=list, description="Child ids (therapists)")
    assigned_therapist: Optional[str] = Field(None, description="Therapist id (children)")
    last_login: Optional[datetime] = None
    last_logout: Optional[datetime] = None
    therapy_start_date: Optional[datetime] = None
    notifications: NotificationPrefs = Field(default_factory=NotificationPrefs)
    device_tokens: List[str] = Field(default_factory=list)
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None
    email_verification_token: Optional[str] = None
    email_verification_expires: Optional[datetime] = None
    stats: UserStats = Field(default_factory=UserStats)
    medical_history: MedicalHistory = Field(default_factory=MedicalHistory)


class Activity(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = None
    steps: List[str] = Field(default_factory=list)
    assistance: Optional[str] = None
    media_urls: List[str] = Field(default_factory=list)
    difficulty: Optional[DifficultyType] = None
    due_date: Optional[datetime] = None
    created_by: Optional[str] = None
    is_active: bool = True


class ActivityAssignment(BaseModel):
    activity_id: str
    child_id: str
    assigned_by: str
    due_date: Optional[datetime] = None
    completion_status: CompletionStatus = "pending"
    started_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    completion_video_url: Optional[str] = None
    score: Optional[int] = Field(None, ge=0, le=100)
    notes: Optional[str] = None
    is_active: bool = True


class CompletionRecord(BaseModel):
    item_id: str
    completed_at: datetime
    completed_by: str
    duration_minutes: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class HomeProgramItem(BaseModel):
    item_id: str
    activity_id: str
    target_frequency_per_week: int = Field(1, ge=1, le=14)
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class HomeProgram(BaseModel):
    child_id: str
    assigned_by: str
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    status: ProgramStatus = "active"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    items: List[HomeProgramItem] = Field(default_factory=list)
    completions: List[CompletionRecord] = Field(default_factory=list, description="Append-only log")


class Progress(BaseModel):
    user_id: str
    program_id: str
    activity_id: Optional[str] = None
    progress_percentage: float = Field(..., ge=0, le=100)
    completed_tasks: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    milestone: Optional[MilestoneType] = None
    custom_milestone: Optional[str] = None
    score: Optional[float] = Field(None, ge=0, le=100)
    time_spent: Optional[float] = Field(None, ge=0)
    difficulty: Optional[DifficultyType] = None
    mood: Optional[MoodType] = None
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False
    status: ProgressStatus = "submitted"
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class EmergencyContact(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    relationship: Optional[str] = None


class PatientDocument(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    url: str
    mime_type: str
    size_bytes: Optional[int] = Field(None, ge=0)
    uploaded_at: datetime
    uploaded_by: str


class PatientDetail(BaseModel):
    user_id: str
    diagnosis: Optional[str] = None
    medical_notes: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    emergency_contact: EmergencyContact = Field(default_factory=EmergencyContact)
    documents: List[PatientDocument] = Field(default_factory=list)
    updated_by: Optional[str] = None


# ---------- Request payloads (not collections) ----------

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: RoleType


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone_number: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[GenderType] = None
    bio: Optional[str] = Field(None, max_length=500)
    profile_picture: Optional[str] = None
    address: Optional[Address] = None
    notifications: Optional[NotificationPrefs] = None

    @field_validator("phone_number")
    @classmethod
    def check_phone(cls, v):
        if v is not None and not _PHONE_RE.match(v.strip()):
            raise ValueError("Please provide a valid phone number")
        return v.strip() if v else v


class AssignTherapistRequest(BaseModel):
    therapist_id: str = Field(..., min_length=1)


class UserStatusUpdate(BaseModel):
    is_active: bool


class ActivityCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = None
    steps: List[str] = Field(default_factory=list)
    assistance: Optional[str] = None
    media_urls: List[str] = Field(default_factory=list)
    difficulty: Optional[DifficultyType] = None
    due_date: Optional[datetime] = None


class AssignmentCreate(BaseModel):
    activity_id: str = Field(..., min_length=1)
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class SubmitActivityRequest(BaseModel):
    completion_video_url: str = Field(..., description="Link to the completion video")
    score: Optional[int] = Field(None, ge=0, le=100)

    @field_validator("completion_video_url")
    @classmethod
    def check_url(cls, v):
        v = v.strip()
        if not re.match(r"^https?://[^\s/$.?#][^\s]*\.[^\s]+$", v):
            raise ValueError("Valid video URL is required")
        return v


class _ProgressFields(BaseModel):
    completed_tasks: Optional[List[str]] = None
    notes: Optional[str] = Field(None, max_length=1000)
    milestone: Optional[MilestoneType] = None
    custom_milestone: Optional[str] = None
    score: Optional[float] = Field(None, ge=0, le=100)
    time_spent: Optional[float] = Field(None, ge=0)
    difficulty: Optional[DifficultyType] = None
    mood: Optional[MoodType] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None

    @field_validator("notes", "custom_milestone")
    @classmethod
    def sanitize_text(cls, v):
        return strip_scripts(v)

    @field_validator("completed_tasks")
    @classmethod
    def check_tasks(cls, v):
        if v is None:
            return v
        cleaned = [strip_scripts(t) for t in v]
        if any(not 1 <= len(t) <= 200 for t in cleaned):
            raise ValueError("Each completed task must be a string between 1-200 characters")
        return cleaned

    @field_validator("tags")
    @classmethod
    def check_tags(cls, v):
        if v is None:
            return v
        cleaned = [strip_scripts(t) for t in v]
        if any(not 1 <= len(t) <= 50 for t in cleaned):
            raise ValueError("Each tag must be a string between 1-50 characters")
        return cleaned

    @model_validator(mode="after")
    def check_custom_milestone(self):
        if self.custom_milestone is not None and len(self.custom_milestone) > 100:
            raise ValueError("Custom milestone must be at most 100 characters")
        if self.milestone == "custom" and not self.custom_milestone:
            raise ValueError('customMilestone is required when milestone is "custom"')
        if self.milestone is not None and self.milestone != "custom" and self.custom_milestone:
            raise ValueError('customMilestone should only be provided when milestone is "custom"')
        return self


class ProgressCreate(_ProgressFields):
    program_id: str = Field(..., min_length=1)
    user_id: Optional[str] = Field(None, description="Defaults to the caller")
    activity_id: Optional[str] = None
    progress_percentage: float = Field(..., ge=0, le=100)
    status: Literal["draft", "submitted"] = "submitted"


class ProgressUpdate(_ProgressFields):
    progress_percentage: Optional[float] = Field(None, ge=0, le=100)
    status: Optional[Literal["draft", "submitted"]] = None


class ProgressReview(BaseModel):
    status: Literal["reviewed", "approved"] = "reviewed"
    review_notes: Optional[str] = Field(None, max_length=500)

    @field_validator("review_notes")
    @classmethod
    def sanitize_notes(cls, v):
        return strip_scripts(v)


class HomeProgramItemCreate(BaseModel):
    activity_id: str = Field(..., min_length=1)
    target_frequency_per_week: int = Field(1, ge=1, le=14)
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class HomeProgramCreate(BaseModel):
    child_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    items: List[HomeProgramItemCreate] = Field(default_factory=list)


class HomeProgramUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    status: Optional[ProgramStatus] = None
    end_date: Optional[datetime] = None
    add_items: List[HomeProgramItemCreate] = Field(default_factory=list)


class CompleteItemRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    duration_minutes: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class PatientDetailUpsert(BaseModel):
    user_id: str = Field(..., min_length=1)
    diagnosis: Optional[str] = None
    medical_notes: Optional[str] = Field(None, max_length=5000)
    allergies: Optional[List[str]] = None
    medications: Optional[List[str]] = None
    emergency_contact: Optional[EmergencyContact] = None


class PatientDocumentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    url: str = Field(..., min_length=1)
    mime_type: str
    size_bytes: Optional[int] = Field(None, ge=0)
