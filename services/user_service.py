from sqlalchemy.orm import Session
from models.users import User
from utils.hashing import get_password_hash
from utils.tokens import utcnow


class UserService:
    """User lookups and the few user writes the auth flows need."""

    @staticmethod
    def find_by_id(db: Session, user_id: int) -> User | None:
        return db.query(User).filter(User.id == user_id).one_or_none()

    @staticmethod
    def find_by_email(db: Session, email: str) -> User | None:
        return db.query(User).filter(User.email == email.lower().strip()).one_or_none()

    @staticmethod
    def update_password(db: Session, user: User, new_password: str) -> None:
        user.password_hash = get_password_hash(new_password)
        db.add(user)
        db.commit()

    @staticmethod
    def update_last_login(db: Session, user: User) -> None:
        user.last_login_at = utcnow()
        db.add(user)
        db.commit()
