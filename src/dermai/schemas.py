"""Request and response bodies for the HTTP API."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SignupRequest(BaseModel):
    """Request body for registering a new user."""

    username: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class SigninRequest(BaseModel):
    """Request body for signing in."""

    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# bounds of a SQLite INTEGER column
MIN_ID = -(2**63)
MAX_ID = 2**63 - 1


class DetectionResultRequest(BaseModel):
    """Request body for saving a detection result.

    ``imageId`` and ``userId`` are optional and are stored without
    checking that the referenced rows exist.
    """

    model_config = ConfigDict(populate_by_name=True)

    image_id: Optional[int] = Field(None, alias="imageId", ge=MIN_ID, le=MAX_ID)
    user_id: Optional[int] = Field(None, alias="userId", ge=MIN_ID, le=MAX_ID)
    disease: str = Field(..., min_length=1)
    accuracy: float = Field(..., allow_inf_nan=False)
    medicine: str = Field(..., min_length=1)

    @field_validator("image_id", "user_id", mode="before")
    @classmethod
    def blank_reference_is_none(cls, value):
        if value == "" or value == 0:
            return None
        return value


class SignupResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "User created successfully"
    user_id: int = Field(..., alias="userId")


class UserOut(BaseModel):
    """Public user profile; never carries the password hash."""

    id: int
    username: str
    email: str


class SigninResponse(BaseModel):
    success: bool = True
    user: UserOut


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    image_id: int = Field(..., alias="imageId")
    filename: str
    original_filename: str = Field(..., alias="originalFilename")
    file_path: str = Field(..., alias="filePath")


class DetectionResultResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    result_id: int = Field(..., alias="resultId")
    disease: str
    accuracy: float
    medicine: str


class HistoryItem(BaseModel):
    """A detection result joined with its image's filename and upload time."""

    id: int
    image_id: Optional[int] = None
    user_id: Optional[int] = None
    disease: str
    accuracy: float
    medicine: str
    detected_at: Optional[datetime] = None
    original_filename: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class HistoryResponse(BaseModel):
    success: bool = True
    history: List[HistoryItem]


class HealthResponse(BaseModel):
    status: str = "OK"
    message: str = "DERMAI Backend is running"
