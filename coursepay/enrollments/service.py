from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.enrollments.models import ENROLLED, Enrollment


async def get_enrollment(db: AsyncSession, user_id: str, course_id: str) -> Enrollment | None:
    result = await db.execute(
        select(Enrollment).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    )
    return result.scalar_one_or_none()


async def enroll(db: AsyncSession, user_id: str, course_id: str) -> Enrollment:
    """Idempotent: an existing enrollment for the pair is returned unchanged."""
    existing = await get_enrollment(db, user_id, course_id)
    if existing is not None:
        existing.status = ENROLLED
        return existing
    enrollment = Enrollment(user_id=user_id, course_id=course_id, status=ENROLLED)
    db.add(enrollment)
    await db.flush()
    return enrollment


async def unenroll(db: AsyncSession, user_id: str, course_id: str) -> bool:
    result = await db.execute(
        delete(Enrollment).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    )
    return result.rowcount > 0


async def list_enrollments(db: AsyncSession, user_id: str) -> list[Enrollment]:
    result = await db.execute(
        select(Enrollment).where(Enrollment.user_id == user_id).order_by(Enrollment.created_at.desc())
    )
    return list(result.scalars().all())
