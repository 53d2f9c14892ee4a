# storefront/services/user_service.py
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.user import UserModel
from storefront.domain.errors import AuthenticationError, DuplicateUserError
from storefront.domain.schemas import LoginIn, UserCreate, UserRead
from storefront.repos.user_repo import UserRepo
from storefront.services.cart_service import CartService
from storefront.services.session_store import public_session
from storefront.services.user_session_manager import UserSessionManager
from storefront.utils.logging import get_logger
from storefront.utils.retry import lock_wait_retry
from storefront.utils.security import hash_password, verify_password

logger = get_logger(__name__)


class UserService:
    """Rejestracja i logowanie; oba scalaja koszyk goscia z X-Cart-Session."""

    def __init__(self, db: Session, user_sessions: UserSessionManager, cart_service: CartService):
        self.repo = UserRepo(db)
        self.user_sessions = user_sessions
        self.cart_service = cart_service

    def register(self, payload: UserCreate, cart_token: str | None = None) -> Dict[str, Any]:
        user = self._create_user(payload)
        logger.info(f"User {user.id} registered")
        return self._start_session(user, cart_token)

    def login(self, payload: LoginIn, cart_token: str | None = None) -> Dict[str, Any]:
        user = self.repo.get_by_email(payload.email.lower())
        if user is None or not verify_password(payload.password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        logger.info(f"User {user.id} logged in")
        return self._start_session(user, cart_token)

    def get_user(self, user_id: int) -> UserModel:
        user = self.repo.get_user(user_id)
        if user is None:
            raise AuthenticationError("User no longer exists")
        return user

    def logout(self, token: str) -> None:
        self.user_sessions.delete_session(token)

    def logout_everywhere(self, user_id: int) -> int:
        return self.user_sessions.delete_all_for_user(user_id)

    def list_sessions(self, user_id: int):
        return [public_session(s) for s in self.user_sessions.find_sessions_by_user(user_id)]

    @lock_wait_retry()
    def _create_user(self, payload: UserCreate) -> UserModel:
        email = payload.email.lower()
        if self.repo.get_by_email(email):
            raise DuplicateUserError(email=email)
        try:
            return self.repo.create_user(
                UserModel(name=payload.name, email=email, password_hash=hash_password(payload.password))
            )
        except IntegrityError as e:
            self.repo.rollback()
            raise DuplicateUserError(email=email) from e
        except Exception:
            self.repo.rollback()
            raise

    def _start_session(self, user: UserModel, cart_token: str | None) -> Dict[str, Any]:
        cart = None
        if cart_token:
            cart = self.cart_service.merge_guest_into_user(user.id, cart_token)
        session = self.user_sessions.create_session(user.id)
        return {
            "access_token": session["token"],
            "token_type": "bearer",
            "user": UserRead.model_validate(user),
            "cart_id": cart.id if cart is not None else None,
        }
