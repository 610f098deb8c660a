from datetime import datetime

from pydantic import BaseModel


class EnrollmentResponse(BaseModel):
    model_config = {"from_attributes": True}

    course_id: str
    status: str
    created_at: datetime


class EnrollmentStatusResponse(BaseModel):
    success: bool = True
    enrolled: bool
    course_id: str
    message: str


class EnrollmentListResponse(BaseModel):
    success: bool = True
    enrollments: list[EnrollmentResponse]
    count: int
