from datetime import timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, PasswordReset, RefreshToken, utcnow
from schemas import (
    ChangePasswordIn,
    ForgotPasswordIn,
    LoginIn,
    RegisterIn,
    ResetPasswordIn,
)
from services import (
    DEFAULT_CATEGORIES,
    AuthenticationError,
    AuthService,
    ConflictError,
    UserService,
)


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send_password_reset_otp(self, to, name, otp, valid_minutes) -> None:
        self.sent.append(
            {"to": to, "name": name, "otp": otp, "valid_minutes": valid_minutes}
        )


def register(session: Session, mailer=None, email: str = "Ada@Example.com"):
    return AuthService(session, mailer=mailer).register(
        RegisterIn(name="Ada Lovelace", email=email, password="secret1")
    )


def test_register_normalizes_email_and_seeds_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, tokens = register(session)

        assert user.email == "ada@example.com"
        assert user.password_hash != "secret1"
        assert tokens.access_token and tokens.refresh_token
        names = session.scalars(
            select(Category.name).where(Category.user_id == user.id)
        ).all()
        assert sorted(names) == sorted(name for name, _, _ in DEFAULT_CATEGORIES)
        assert session.scalar(select(func.count(RefreshToken.id))) == 1


def test_register_rejects_duplicate_email() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        register(session)
        with pytest.raises(ConflictError):
            register(session, email="ada@example.com")


def test_login_checks_password_and_active_flag() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, _ = register(session)
        auth = AuthService(session)

        logged_in, _ = auth.login(LoginIn(email="ADA@example.com", password="secret1"))
        assert logged_in.id == user.id

        with pytest.raises(AuthenticationError):
            auth.login(LoginIn(email="ada@example.com", password="wrong"))

        UserService(session, user.id).deactivate()
        with pytest.raises(AuthenticationError):
            auth.login(LoginIn(email="ada@example.com", password="secret1"))


def test_access_token_authenticates_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, tokens = register(session)

        assert AuthService(session).authenticate(tokens.access_token).id == user.id


def test_refresh_rotates_tokens() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, tokens = register(session)
        auth = AuthService(session)

        _, rotated = auth.refresh(tokens.refresh_token)

        assert rotated.refresh_token != tokens.refresh_token
        with pytest.raises(AuthenticationError):
            auth.refresh(tokens.refresh_token)
        with pytest.raises(AuthenticationError):
            auth.refresh(None)
        with pytest.raises(AuthenticationError):
            auth.refresh("not-a-token")


def test_logout_forgets_refresh_token() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, tokens = register(session)
        auth = AuthService(session)

        auth.logout(tokens.refresh_token)

        with pytest.raises(AuthenticationError):
            auth.refresh(tokens.refresh_token)


def test_password_reset_with_otp() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mailer = RecordingMailer()
        _, tokens = register(session, mailer=mailer)
        auth = AuthService(session, mailer=mailer)

        auth.forgot_password(ForgotPasswordIn(email="ada@example.com"))

        assert len(mailer.sent) == 1
        sent = mailer.sent[0]
        assert sent["to"] == "ada@example.com"
        assert sent["valid_minutes"] == 15
        assert len(sent["otp"]) == 6 and sent["otp"].isdigit()

        wrong = "000000" if sent["otp"] != "000000" else "111111"
        with pytest.raises(ValueError):
            auth.reset_password(
                ResetPasswordIn(email="ada@example.com", otp=wrong, new_password="newpass")
            )

        auth.reset_password(
            ResetPasswordIn(
                email="ada@example.com", otp=sent["otp"], new_password="newpass"
            )
        )

        auth.login(LoginIn(email="ada@example.com", password="newpass"))
        with pytest.raises(AuthenticationError):
            auth.refresh(tokens.refresh_token)
        with pytest.raises(ValueError):
            auth.reset_password(
                ResetPasswordIn(
                    email="ada@example.com", otp=sent["otp"], new_password="again1"
                )
            )


def test_new_otp_supersedes_previous_one() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mailer = RecordingMailer()
        register(session, mailer=mailer)
        auth = AuthService(session, mailer=mailer)

        auth.forgot_password(ForgotPasswordIn(email="ada@example.com"))
        auth.forgot_password(ForgotPasswordIn(email="ada@example.com"))

        unused = session.scalars(
            select(PasswordReset).where(PasswordReset.used.is_(False))
        ).all()
        assert [r.otp for r in unused] == [mailer.sent[1]["otp"]]


def test_forgot_password_for_unknown_email_sends_nothing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mailer = RecordingMailer()
        AuthService(session, mailer=mailer).forgot_password(
            ForgotPasswordIn(email="nobody@example.com")
        )

        assert mailer.sent == []


def test_change_password_can_revoke_sessions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user, tokens = register(session)
        users = UserService(session, user.id)

        with pytest.raises(ValueError):
            users.change_password(
                ChangePasswordIn(current_password="nope", new_password="secret2")
            )

        users.change_password(
            ChangePasswordIn(current_password="secret1", new_password="secret2"),
            revoke_sessions=True,
        )

        assert session.scalar(select(func.count(RefreshToken.id))) == 0
        AuthService(session).login(LoginIn(email="ada@example.com", password="secret2"))


def test_purge_expired_removes_stale_credentials() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mailer = RecordingMailer()
        register(session, mailer=mailer)
        auth = AuthService(session, mailer=mailer)
        auth.forgot_password(ForgotPasswordIn(email="ada@example.com"))

        assert auth.purge_expired() == 0
        assert auth.purge_expired(utcnow() + timedelta(days=8)) == 2
        assert session.scalar(select(func.count(RefreshToken.id))) == 0
