"""User service - credential store lookups, signup and password authentication"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from openfare.models.user import User
from openfare.schemas.user import UserCreate, UserRole
from openfare.core.security import burn_password_check, get_password_hash, verify_password
from openfare.core.exceptions import InvalidCredentialsError, ResourceAlreadyExistsError
import logging

logger = logging.getLogger(__name__)


class UserService:
    """Service for user management"""

    @staticmethod
    def create_user(db: Session, user_data: UserCreate, role: UserRole = UserRole.PASSENGER) -> User:
        """
        Create new user

        Args:
            db: Database session
            user_data: Signup data
            role: Role to assign; self-service signup always uses PASSENGER

        Returns:
            Created user
        """
        existing = db.query(User).filter(User.email == user_data.email).first()
        if existing:
            raise ResourceAlreadyExistsError("User with this email")

        user = User(
            name=user_data.name,
            email=user_data.email,
            phone=user_data.phone or None,
            password_hash=get_password_hash(user_data.password),
            role=UserRole(role).value,
        )

        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent signup for the same email.
            db.rollback()
            raise ResourceAlreadyExistsError("User with this email")
        db.refresh(user)

        logger.info(f"Created user id={user.id} (role: {user.role})")
        return user

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> User:
        """
        Authenticate user by email and password

        Unknown email and wrong password raise the same error after the same
        amount of bcrypt work.

        Args:
            db: Database session
            email: Email, matched exactly against the stored column
            password: Password

        Returns:
            Authenticated user
        """
        user = UserService.get_user_by_email(db, email)

        if not user:
            burn_password_check(password)
            logger.warning("Login failed: invalid credentials")
            raise InvalidCredentialsError()

        if not verify_password(password, user.password_hash):
            logger.warning("Login failed: invalid credentials")
            raise InvalidCredentialsError()

        logger.info(f"User authenticated: id={user.id}")
        return user

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email (case-sensitive exact match)"""
        return db.query(User).filter(User.email == email).first()

    @staticmethod
    def get_users(
        db: Session,
        role: Optional[UserRole] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[User], int]:
        """
        Page through users, newest first, optionally filtered by role

        Returns:
            Tuple of (users on the page, total matching users)
        """
        query = db.query(User)
        if role:
            query = query.filter(User.role == UserRole(role).value)

        total = query.count()
        users = (
            query.order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return users, total

    @staticmethod
    def ensure_admin(db: Session, email: str, password: str) -> Optional[User]:
        """Create the bootstrap admin account if it does not exist yet"""
        if UserService.get_user_by_email(db, email):
            return None
        admin = User(
            name="Admin User",
            email=email,
            password_hash=get_password_hash(password),
            role=UserRole.ADMIN.value,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        logger.info(f"Created admin user: {email}")
        return admin


# Singleton instance
user_service = UserService()
