"""
Boundary with the identity provider.

The lending core never checks passwords itself. It asks an ``AuthProvider``
to create accounts and to turn a bearer token into a user id; roles are then
resolved through ``directory.resolve_role``. ``LocalAuthProvider`` keeps
credentials in the ``accounts`` table so the app runs without a hosted
identity service.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

import models
from config import Settings, settings as default_settings
from errors import AccountExists

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthProvider:
    def create_account(self, email: str, password: str, attributes: Optional[dict] = None) -> int:
        raise NotImplementedError

    def delete_account(self, user_id: int) -> None:
        raise NotImplementedError

    def authenticate(self, email: str, password: str) -> Optional[int]:
        raise NotImplementedError

    def create_access_token(self, user_id: int) -> str:
        raise NotImplementedError

    def resolve_session(self, token: str) -> Optional[int]:
        raise NotImplementedError


class LocalAuthProvider(AuthProvider):
    def __init__(self, session_factory: sessionmaker, settings: Settings = None):
        self.session_factory = session_factory
        self.settings = settings or default_settings

    def create_account(self, email: str, password: str, attributes: Optional[dict] = None) -> int:
        email = email.strip().lower()
        db = self.session_factory()
        try:
            if db.query(models.Account).filter(models.Account.email == email).first():
                raise AccountExists(f"Email {email} already registered")
            account = models.Account(email=email, hashed_password=pwd_context.hash(password))
            db.add(account)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise AccountExists(f"Email {email} already registered")
            logger.info("Created account %s for %s", account.id, email)
            return account.id
        finally:
            db.close()

    def delete_account(self, user_id: int) -> None:
        db = self.session_factory()
        try:
            db.query(models.Account).filter(models.Account.id == user_id).delete()
            db.commit()
        finally:
            db.close()

    def authenticate(self, email: str, password: str) -> Optional[int]:
        db = self.session_factory()
        try:
            account = db.query(models.Account).filter(
                models.Account.email == email.strip().lower()
            ).first()
            if account and pwd_context.verify(password, account.hashed_password):
                return account.id
            return None
        finally:
            db.close()

    def create_access_token(self, user_id: int) -> str:
        expire = datetime.utcnow() + timedelta(minutes=self.settings.access_token_expire_minutes)
        to_encode = {"sub": str(user_id), "exp": expire}
        return jwt.encode(to_encode, self.settings.secret_key, algorithm=self.settings.jwt_algorithm)

    def resolve_session(self, token: str) -> Optional[int]:
        try:
            payload = jwt.decode(token, self.settings.secret_key, algorithms=[self.settings.jwt_algorithm])
        except JWTError:
            return None
        subject = payload.get("sub")
        if subject is None:
            return None
        try:
            return int(subject)
        except ValueError:
            return None
