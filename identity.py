# Identity & session: signup, OTP verification, login, logout, profile, password reset
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from flask_jwt_extended import create_access_token
from sqlalchemy.exc import IntegrityError

from errors import (AlreadyVerified, DeliveryFailure, DuplicateEmail, InvalidCredentials,
                    InvalidOrExpiredCode, InvalidOrExpiredToken, NotFound, NotVerified,
                    ValidationFailure)
from extensions import bcrypt
from forms import (BIO_MAX_LENGTH, NAME_MAX_LENGTH, clean_text, normalize_email,
                   require_fields, validate_email, validate_password)
from models import db, RevokedToken, User, utcnow

logger = logging.getLogger(__name__)

PASSWORD_RULE = "Password must be 8 to 72 bytes long"
RESET_MESSAGE = "If an account with that email exists, you will receive a reset email."


@dataclass
class IdentitySettings:
    otp_ttl: timedelta
    reset_token_ttl: timedelta
    unverified_ttl: timedelta
    client_url: str
    users_list_limit: int = 50

    @classmethod
    def from_config(cls, config):
        return cls(
            otp_ttl=timedelta(seconds=config['OTP_TTL_SECONDS']),
            reset_token_ttl=timedelta(seconds=config['RESET_TOKEN_TTL_SECONDS']),
            unverified_ttl=timedelta(days=config['UNVERIFIED_ACCOUNT_TTL_DAYS']),
            client_url=config['CLIENT_URL'].rstrip('/'),
            users_list_limit=config['USERS_LIST_LIMIT'],
        )


def generate_otp():
    return str(1000 + secrets.randbelow(9000))


def hash_reset_token(token):
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class IdentityService:
    def __init__(self, mailer, image_store, settings, clock=utcnow):
        self.mailer = mailer
        self.image_store = image_store
        self.settings = settings
        self.clock = clock
        # Compared against when the email is unknown so both login paths cost a bcrypt check
        self._dummy_hash = bcrypt.generate_password_hash(secrets.token_hex(16)).decode('utf-8')

    # -- helpers -----------------------------------------------------------

    def _find_by_email(self, email):
        return User.query.filter_by(email=normalize_email(email)).first()

    def _hash_secret(self, value):
        return bcrypt.generate_password_hash(value).decode('utf-8')

    def _secret_matches(self, stored_hash, candidate):
        try:
            return bcrypt.check_password_hash(stored_hash or self._dummy_hash, candidate)
        except ValueError:
            return False

    def _issue_otp(self, user):
        otp = generate_otp()
        user.otp_hash = self._hash_secret(otp)
        user.otp_expires_at = self.clock() + self.settings.otp_ttl
        return otp

    def _send_otp(self, user, otp):
        ttl_minutes = int(self.settings.otp_ttl.total_seconds() // 60)
        self.mailer.send_otp(user.email, user.first_name, otp, ttl_minutes)

    def _issue_session(self, user):
        return create_access_token(identity=str(user.user_id))

    # -- signup & verification --------------------------------------------

    def register(self, data):
        """Create a pending account and email its OTP; nothing is stored if the email fails."""
        require_fields(data, 'firstName', 'lastName', 'email', 'password')
        first_name = clean_text(data['firstName'], 'firstName', NAME_MAX_LENGTH)
        last_name = clean_text(data['lastName'], 'lastName', NAME_MAX_LENGTH)
        if not validate_email(data['email']):
            raise ValidationFailure("Invalid email format")
        if not validate_password(data['password']):
            raise ValidationFailure(PASSWORD_RULE)

        email = normalize_email(data['email'])
        if self._find_by_email(email):
            raise DuplicateEmail()

        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password_hash=self._hash_secret(data['password']),
            is_verified=False,
            created_at=self.clock(),
        )
        otp = self._issue_otp(user)
        self._send_otp(user, otp)

        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateEmail()
        logger.info("Registered pending account %s", user.user_id)
        return user

    def resend_otp(self, email):
        if not isinstance(email, str) or not email.strip():
            raise ValidationFailure("Email required")
        user = self._find_by_email(email)
        if user is None:
            raise NotFound("User not found")
        if user.is_verified:
            raise AlreadyVerified()

        otp = self._issue_otp(user)
        try:
            self._send_otp(user, otp)
        except DeliveryFailure:
            db.session.rollback()
            raise
        db.session.commit()
        return user

    def verify_otp(self, email, code):
        if not isinstance(email, str) or code in (None, ''):
            raise ValidationFailure("Email and OTP are required")
        user = self._find_by_email(email)
        if user is None:
            raise NotFound("User not found")
        if user.is_verified:
            raise AlreadyVerified()

        # Evaluate both checks before deciding so a stale code and a wrong code look the same
        code_ok = self._secret_matches(user.otp_hash, str(code).strip())
        fresh = user.otp_expires_at is not None and self.clock() < user.otp_expires_at
        if not (code_ok and fresh):
            raise InvalidOrExpiredCode()

        user.is_verified = True
        user.otp_hash = None
        user.otp_expires_at = None
        db.session.commit()
        logger.info("Verified account %s", user.user_id)
        return self._issue_session(user), user

    # -- sessions ----------------------------------------------------------

    def login(self, email, password):
        if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
            raise ValidationFailure("Email and password are required")
        user = self._find_by_email(email)
        if user is None:
            self._secret_matches(self._dummy_hash, password)
            logger.info("Login failed for unknown email")
            raise InvalidCredentials()
        if not self._secret_matches(user.password_hash, password):
            logger.info("Login failed for account %s", user.user_id)
            raise InvalidCredentials()
        if not user.is_verified:
            raise NotVerified()
        return self._issue_session(user), user

    def revoke(self, jwt_payload):
        expires_at = datetime.fromtimestamp(jwt_payload['exp'], timezone.utc).replace(tzinfo=None)
        db.session.add(RevokedToken(jti=jwt_payload['jti'], expires_at=expires_at))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()

    def is_revoked(self, jti):
        return db.session.query(RevokedToken.token_id).filter_by(jti=jti).first() is not None

    # -- profiles ----------------------------------------------------------

    def update_profile(self, user, form, avatar=None):
        if 'firstName' in form:
            user.first_name = clean_text(form.get('firstName'), 'firstName', NAME_MAX_LENGTH)
        if 'lastName' in form:
            user.last_name = clean_text(form.get('lastName'), 'lastName', NAME_MAX_LENGTH)
        if 'bio' in form:
            user.bio = clean_text(form.get('bio'), 'bio', BIO_MAX_LENGTH, required=False) or ''

        avatar_url = self.image_store.resolve(avatar, form.get('avatarUrl'), kind='avatars')
        if avatar_url is not None:
            user.avatar_url = avatar_url

        db.session.commit()
        return user

    def list_users(self, viewer=None, limit=None):
        cap = self.settings.users_list_limit
        limit = min(limit or cap, cap)
        query = User.query.filter_by(is_verified=True)
        if viewer is not None:
            query = query.filter(User.user_id != viewer.user_id)
        return query.order_by(User.created_at.desc(), User.user_id.desc()).limit(limit).all()

    def get_user(self, user_id):
        user = db.session.get(User, user_id)
        if user is None or not user.is_verified:
            raise NotFound("User not found")
        return user

    # -- password reset ----------------------------------------------------

    def request_password_reset(self, email):
        """Always answers with the same message, whether or not the account exists."""
        if not isinstance(email, str) or not email.strip():
            raise ValidationFailure("Email required")

        user = self._find_by_email(email)
        if user is None:
            return RESET_MESSAGE

        token = secrets.token_hex(32)
        user.password_reset_hash = hash_reset_token(token)
        user.password_reset_expires_at = self.clock() + self.settings.reset_token_ttl
        db.session.commit()

        reset_url = (f"{self.settings.client_url}/reset-password"
                     f"?token={token}&email={quote(user.email)}")
        ttl_minutes = int(self.settings.reset_token_ttl.total_seconds() // 60)
        try:
            self.mailer.send_password_reset(user.email, reset_url, ttl_minutes)
        except DeliveryFailure:
            logger.warning("Reset email for account %s was not delivered", user.user_id)
        else:
            logger.info("Password reset requested for account %s", user.user_id)
        return RESET_MESSAGE

    def reset_password(self, data):
        require_fields(data, 'token', 'email', 'newPassword')
        if not validate_password(data['newPassword']):
            raise ValidationFailure(PASSWORD_RULE)

        user = self._find_by_email(str(data['email']))
        if user is None or not user.password_reset_hash:
            raise InvalidOrExpiredToken()
        token_ok = hmac.compare_digest(user.password_reset_hash, hash_reset_token(str(data['token'])))
        fresh = (user.password_reset_expires_at is not None
                 and self.clock() < user.password_reset_expires_at)
        if not (token_ok and fresh):
            raise InvalidOrExpiredToken()

        user.password_hash = self._hash_secret(data['newPassword'])
        user.password_reset_hash = None
        user.password_reset_expires_at = None
        db.session.commit()
        logger.info("Password reset for account %s", user.user_id)
        return user

    # -- retention ---------------------------------------------------------

    def purge_expired(self):
        """Drop stale pending accounts and denylist entries for tokens that expired anyway."""
        now = self.clock()
        users = User.query.filter(
            User.is_verified.is_(False),
            User.created_at < now - self.settings.unverified_ttl,
        ).delete(synchronize_session=False)
        tokens = RevokedToken.query.filter(RevokedToken.expires_at < now).delete(
            synchronize_session=False)
        db.session.commit()
        logger.info("Purged %d pending accounts and %d revoked tokens", users, tokens)
        return users, tokens
