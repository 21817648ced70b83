from fastapi import APIRouter, Depends, Request
from fastapi_users.exceptions import InvalidPasswordException, UserAlreadyExists

from core.auth import UserManager, current_user, get_user_manager
from core.errors import DuplicateEmail, InvalidPassword
from db.users import User
from schemas.users import UserRead, UserUpdate

# Only the caller's own account is exposed here; managing other users goes
# through /admin so the primary-admin and dependent-operation rules apply.
router = APIRouter()


@router.get("/me", response_model=UserRead)
async def read_me(user: User = Depends(current_user)):
    return UserRead.model_validate(user, from_attributes=True)


@router.patch("/me", response_model=UserRead)
async def update_me(
    payload: UserUpdate,
    request: Request,
    user: User = Depends(current_user),
    user_manager: UserManager = Depends(get_user_manager),
):
    try:
        user = await user_manager.update(payload, user, safe=True, request=request)
    except UserAlreadyExists as e:
        raise DuplicateEmail() from e
    except InvalidPasswordException as e:
        raise InvalidPassword(str(e.reason)) from e
    return UserRead.model_validate(user, from_attributes=True)
