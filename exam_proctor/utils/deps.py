from typing import Optional
from fastapi import Depends, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_proctor.core.database import get_db
from exam_proctor.core.exceptions import ForbiddenError, UnauthorizedError
from exam_proctor.core.security import verify_access_token
from exam_proctor.models import User
from exam_proctor.utils.pagination import DEFAULT_PAGE_SIZE, Paging, build_paging

security = HTTPBearer(auto_error=False)

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user"""
    if not credentials:
        raise UnauthorizedError("Missing authentication credentials")

    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError()

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise UnauthorizedError()

    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.deleted_at.is_(None)
        )
    )
    user = result.scalar_one_or_none()
    if not user:
        raise UnauthorizedError()

    return user

async def require_student(
    current_user: User = Depends(get_current_user)
) -> User:
    """Require current user to be a student"""
    if not current_user.is_student:
        raise ForbiddenError("Student access required")
    return current_user

async def require_staff(
    current_user: User = Depends(get_current_user)
) -> User:
    """Require current user to be an admin or instructor"""
    if not current_user.is_staff:
        raise ForbiddenError("Admin or instructor access required")
    return current_user

def paging_params(allowed_sort=()):
    """Build a dependency reading page, pageSize and sort from the query string"""
    async def dependency(
        page: int = Query(0),
        page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize"),
        sort: Optional[str] = Query(None),
    ) -> Paging:
        return build_paging(page, page_size, sort, allowed_sort)
    return dependency
