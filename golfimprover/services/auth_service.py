"""Identity provider wrapper and the per-request authentication session."""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from supabase import Client as SupabaseClient
from werkzeug.security import check_password_hash, generate_password_hash

from ..models import to_iso, utcnow
from ..utils.auth import (
    EMAIL_ALREADY_IN_USE,
    INVALID_CREDENTIAL,
    INVALID_EMAIL,
    OPERATION_NOT_ALLOWED,
    UNAUTHENTICATED,
    USER_DISABLED,
    USER_NOT_FOUND,
    WEAK_PASSWORD,
    AuthError,
)
from .document_store import DocumentStore
from .storage_service import StorageService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6
OAUTH_PROVIDERS = ('google', 'apple')

# Supabase Auth error codes mapped onto the application's error taxonomy.
_PROVIDER_CODES: Dict[str, str] = {
    'invalid_credentials': INVALID_CREDENTIAL,
    'email_address_invalid': INVALID_EMAIL,
    'validation_failed': INVALID_EMAIL,
    'user_banned': USER_DISABLED,
    'user_not_found': USER_NOT_FOUND,
    'email_exists': EMAIL_ALREADY_IN_USE,
    'user_already_exists': EMAIL_ALREADY_IN_USE,
    'weak_password': WEAK_PASSWORD,
    'provider_disabled': OPERATION_NOT_ALLOWED,
    'email_provider_disabled': OPERATION_NOT_ALLOWED,
}

_STATUS_BY_CODE: Dict[Optional[str], int] = {
    INVALID_EMAIL: 400,
    WEAK_PASSWORD: 400,
    USER_DISABLED: 403,
    EMAIL_ALREADY_IN_USE: 409,
    OPERATION_NOT_ALLOWED: 501,
}

ACCOUNTS_COLLECTION = 'authAccounts'


def _provider_error(exc: Exception, default_code: Optional[str] = None) -> AuthError:
    raw_code = getattr(exc, 'code', None)
    code = _PROVIDER_CODES.get(str(raw_code), default_code) if raw_code else default_code
    return AuthError(getattr(exc, 'message', None) or str(exc), code=code, status_code=_STATUS_BY_CODE.get(code, 401))


class AuthService:
    """Sign-up, sign-in and sign-out against Supabase Auth.

    Without a Supabase client, accounts are kept in the document store with
    hashed passwords so the app works for local development.
    """

    def __init__(
        self,
        storage: StorageService,
        store: DocumentStore,
        supabase: Optional[SupabaseClient] = None,
    ) -> None:
        self._storage = storage
        self._store = store
        self._supabase = supabase

    @property
    def uses_provider(self) -> bool:
        return self._supabase is not None

    def sign_up(self, email: str, password: str, name: Optional[str] = None) -> Dict[str, Any]:
        email = self._check_email(email)
        if len(password or '') < MIN_PASSWORD_LENGTH:
            raise AuthError('Password is too short.', code=WEAK_PASSWORD, status_code=400)

        if self._supabase:
            try:
                response = self._supabase.auth.sign_up(
                    {
                        'email': email,
                        'password': password,
                        'options': {'data': {'name': name} if name else {}},
                    }
                )
            except Exception as exc:
                logger.warning('Supabase sign up failed for %s', email, exc_info=True)
                raise _provider_error(exc) from exc
            user = getattr(response, 'user', None)
            if not user:  # pragma: no cover - network dependent
                raise AuthError('Sign up failed.', code=None)
            user_id = user.id
        else:
            account_path = self._account_path(email)
            if self._store.get(account_path) is not None:
                raise AuthError('Account already exists.', code=EMAIL_ALREADY_IN_USE, status_code=409)
            user_id = uuid4().hex
            self._store.set(
                account_path,
                {
                    'uid': user_id,
                    'email': email,
                    'passwordHash': generate_password_hash(password),
                    'disabled': False,
                    'createdAt': to_iso(utcnow()),
                },
            )

        self._ensure_profile(user_id, email, name)
        logger.info('Signed up user %s', user_id)
        return {'id': user_id, 'email': email, 'name': name}

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        email = self._check_email(email)
        logger.info('Attempting to sign in %s', email)

        if self._supabase:
            try:
                response = self._supabase.auth.sign_in_with_password(
                    {'email': email, 'password': password}
                )
            except Exception as exc:
                logger.warning('Supabase sign in failed for %s', email, exc_info=True)
                raise _provider_error(exc, INVALID_CREDENTIAL) from exc
            user = getattr(response, 'user', None)
            if not user:  # pragma: no cover - network dependent
                raise AuthError('Invalid credentials.', code=INVALID_CREDENTIAL)
            metadata = getattr(user, 'user_metadata', None) or {}
            return {'id': user.id, 'email': email, 'name': metadata.get('name')}

        account = self._store.get(self._account_path(email))
        if account is None:
            raise AuthError('No account for this email.', code=USER_NOT_FOUND)
        if account.get('disabled'):
            raise AuthError('Account disabled.', code=USER_DISABLED, status_code=403)
        if not check_password_hash(account.get('passwordHash', ''), password or ''):
            raise AuthError('Invalid credentials.', code=INVALID_CREDENTIAL)

        profile = self._storage.get_user_profile(account['uid']) or {}
        return {'id': account['uid'], 'email': email, 'name': profile.get('name')}

    def sign_in_with_google(self, redirect_to: Optional[str] = None) -> Dict[str, str]:
        return self._sign_in_with_oauth('google', redirect_to)

    def sign_in_with_apple(self, redirect_to: Optional[str] = None) -> Dict[str, str]:
        return self._sign_in_with_oauth('apple', redirect_to)

    def logout(self) -> None:
        if self._supabase:
            try:
                self._supabase.auth.sign_out()
            except Exception:  # pragma: no cover - network dependent
                logger.warning('Supabase sign out failed', exc_info=True)

    def _sign_in_with_oauth(self, provider: str, redirect_to: Optional[str]) -> Dict[str, str]:
        """Return the provider authorisation URL the client should be sent to."""

        if not self._supabase:
            raise AuthError(
                f'{provider.title()} sign-in is not configured on this server.',
                code=OPERATION_NOT_ALLOWED,
                status_code=501,
            )
        credentials: Dict[str, Any] = {'provider': provider}
        if redirect_to:
            credentials['options'] = {'redirect_to': redirect_to}
        try:
            response = self._supabase.auth.sign_in_with_oauth(credentials)
        except Exception as exc:
            logger.warning('Supabase %s sign in failed', provider, exc_info=True)
            raise _provider_error(exc) from exc
        return {'provider': provider, 'url': getattr(response, 'url', '')}

    def _ensure_profile(self, user_id: str, email: str, name: Optional[str]) -> None:
        if self._storage.get_user_profile(user_id) is not None:
            return
        self._storage.create_user_profile(
            user_id,
            {'email': email, 'name': name, 'createdAt': to_iso(utcnow()), 'hasCompletedTutorial': False},
        )

    @staticmethod
    def _check_email(email: str) -> str:
        email = (email or '').strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise AuthError('Invalid email address.', code=INVALID_EMAIL, status_code=400)
        return email

    @staticmethod
    def _account_path(email: str) -> str:
        digest = hashlib.sha256(email.encode('utf-8')).hexdigest()
        return f'{ACCOUNTS_COLLECTION}/{digest}'


class AuthSession:
    """Authentication state for one client session.

    ``loading`` stays true until :meth:`resolve` is called; while loading the
    current user is unknown and :meth:`require_user` refuses access. Every
    change of user is pushed to the subscribers.
    """

    def __init__(self, auth_service: AuthService) -> None:
        self._auth = auth_service
        self._current_user: Optional[Dict[str, Any]] = None
        self._loading = True
        self._subscribers: List[Callable[[Optional[Dict[str, Any]]], None]] = []
        self._lock = threading.Lock()

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        return self._current_user

    @property
    def loading(self) -> bool:
        return self._loading

    def subscribe(self, callback: Callable[[Optional[Dict[str, Any]]], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)
        if not self._loading:
            callback(self._current_user)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def resolve(self, user: Optional[Dict[str, Any]]) -> None:
        """Finish the initial lookup with the user restored from storage, if any."""

        self._set_user(user)

    def sign_up(self, email: str, password: str, name: Optional[str] = None) -> Dict[str, Any]:
        user = self._auth.sign_up(email, password, name)
        self._set_user(user)
        return user

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        user = self._auth.sign_in(email, password)
        self._set_user(user)
        return user

    def sign_in_with_google(self, redirect_to: Optional[str] = None) -> Dict[str, str]:
        return self._auth.sign_in_with_google(redirect_to)

    def sign_in_with_apple(self, redirect_to: Optional[str] = None) -> Dict[str, str]:
        return self._auth.sign_in_with_apple(redirect_to)

    def logout(self) -> None:
        self._auth.logout()
        self._set_user(None)

    def require_user(self) -> Dict[str, Any]:
        if self._loading or not self._current_user:
            raise AuthError('Unauthorized', code=UNAUTHENTICATED)
        return self._current_user

    def _set_user(self, user: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            self._current_user = dict(user) if user else None
            self._loading = False
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(self._current_user)
