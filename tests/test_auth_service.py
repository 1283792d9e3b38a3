"""Unit tests for auth/service.py -- the session and credential state machine.

The service runs against an in-memory AccountStore with the admin account
from conftest.ADMIN_EMAIL / ADMIN_PASSWORD, and a FakeClock so lockout and
reset expiry can be crossed without sleeping.
"""

from datetime import timedelta

import pytest

from auth.models import SessionRecord
from auth.passwords import verify_password
from auth.tokens import create_refresh_token, generate_token_id
from core.errors import (
    AccountLocked,
    AuthenticationFailure,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidResetToken,
    TokenReuseDetected,
)
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def _actions(service) -> list[str]:
    return [e.action for e in service.store.list_audit(limit=100)]


# ---------------------------------------------------------------------------
# Login and lockout
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success_opens_a_session(self, auth_service):
        result = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD, "203.0.113.5", "pytest")
        account = auth_service.store.get_by_email(ADMIN_EMAIL)
        assert result.account.id == account.id
        assert len(account.active_sessions) == 1
        assert account.active_sessions[0].client_ip == "203.0.113.5"
        assert account.last_login is not None
        assert result.tokens.access_token != result.tokens.refresh_token
        assert "login" in _actions(auth_service)

    def test_wrong_password(self, auth_service):
        with pytest.raises(InvalidCredentials):
            auth_service.login(ADMIN_EMAIL, "wrong")
        assert auth_service.store.get_by_email(ADMIN_EMAIL).failed_login_attempts == 1

    def test_unknown_email_fails_like_a_wrong_password(self, auth_service):
        with pytest.raises(InvalidCredentials) as unknown:
            auth_service.login("ghost@newsdesk.test", ADMIN_PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            auth_service.login(ADMIN_EMAIL, "wrong")
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code

    def test_invalid_credentials_is_an_authentication_failure(self):
        assert issubclass(InvalidCredentials, AuthenticationFailure)

    def test_five_failures_lock_out_the_correct_password(self, auth_service, clock):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                auth_service.login(ADMIN_EMAIL, "wrong")
        with pytest.raises(AccountLocked) as exc:
            auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD)
        assert exc.value.locked_until == clock.now + timedelta(minutes=10)
        assert "account_locked" in _actions(auth_service)

    def test_locked_check_does_not_count_as_an_attempt(self, auth_service):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                auth_service.login(ADMIN_EMAIL, "wrong")
        with pytest.raises(AccountLocked):
            auth_service.login(ADMIN_EMAIL, "wrong-again")
        assert auth_service.store.get_by_email(ADMIN_EMAIL).failed_login_attempts == 5

    def test_success_after_lock_expires_resets_counter(self, auth_service, clock):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                auth_service.login(ADMIN_EMAIL, "wrong")
        clock.advance(minutes=10, seconds=1)
        auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD)
        account = auth_service.store.get_by_email(ADMIN_EMAIL)
        assert account.failed_login_attempts == 0
        assert account.locked_until is None

    def test_failure_after_lock_expires_relocks(self, auth_service, clock):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                auth_service.login(ADMIN_EMAIL, "wrong")
        clock.advance(minutes=11)
        with pytest.raises(InvalidCredentials):
            auth_service.login(ADMIN_EMAIL, "wrong")
        with pytest.raises(AccountLocked):
            auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD)

    def test_success_before_threshold_resets_counter(self, auth_service):
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                auth_service.login(ADMIN_EMAIL, "wrong")
        auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD)
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                auth_service.login(ADMIN_EMAIL, "wrong")
        auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD)


# ---------------------------------------------------------------------------
# Refresh rotation
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_fresh_refresh_token_validates_exactly_once(self, auth_service):
        token = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        auth_service.refresh(token)
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(token)

    def test_rotation_replaces_the_session(self, auth_service):
        first = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens
        second = auth_service.refresh(first.refresh_token)
        account, record = auth_service.validate_refresh_token(second.refresh_token)
        assert [r.token_id for r in account.active_sessions] == [record.token_id]
        assert len(account.refresh_tokens) == 2

    def test_reuse_is_reported_and_audited(self, auth_service):
        token = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        auth_service.refresh(token)
        with pytest.raises(TokenReuseDetected):
            auth_service.refresh(token, client_ip="192.0.2.1")
        assert "refresh_reuse" in _actions(auth_service)

    def test_reuse_does_not_kill_the_rotated_session(self, auth_service):
        token = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        current = auth_service.refresh(token).refresh_token
        with pytest.raises(TokenReuseDetected):
            auth_service.refresh(token)
        auth_service.refresh(current)

    def test_race_loser_fails(self, auth_service, clock, monkeypatch):
        token = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        stale = auth_service.validate_refresh_token(token)
        account, record = stale
        # Another worker rotates the same record after this one validated it.
        assert auth_service.store.rotate_session(
            account.id, record.token_id, SessionRecord(token_id=generate_token_id(), issued_at=clock.now)
        )
        monkeypatch.setattr(auth_service, "validate_refresh_token", lambda raw: stale)
        with pytest.raises(TokenReuseDetected):
            auth_service.refresh(token)
        assert len(auth_service.store.get_by_id(account.id).active_sessions) == 1

    def test_missing_or_garbage_token(self, auth_service):
        for raw in (None, "", "garbage"):
            with pytest.raises(InvalidRefreshToken):
                auth_service.refresh(raw)

    def test_signed_token_with_unknown_token_id(self, auth_service):
        account = auth_service.store.get_by_email(ADMIN_EMAIL)
        forged = create_refresh_token(account.id, generate_token_id())
        with pytest.raises(InvalidRefreshToken) as exc:
            auth_service.refresh(forged)
        assert not isinstance(exc.value, TokenReuseDetected)

    def test_signed_token_for_unknown_account(self, auth_service):
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(create_refresh_token("no-such-account", generate_token_id()))

    def test_access_token_cannot_refresh(self, auth_service):
        tokens = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(tokens.access_token)


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_revokes_only_that_session(self, auth_service):
        first = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        second = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        assert auth_service.logout(first)
        with pytest.raises(InvalidRefreshToken):
            auth_service.refresh(first)
        auth_service.refresh(second)

    def test_logout_is_idempotent(self, auth_service):
        token = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        assert auth_service.logout(token) is True
        assert auth_service.logout(token) is False

    def test_logout_never_raises(self, auth_service):
        for raw in (None, "", "garbage", create_refresh_token("nobody", generate_token_id())):
            assert auth_service.logout(raw) is False

    def test_logout_accepts_an_expired_token(self, auth_service, clock):
        login = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD)
        _, record = auth_service.validate_refresh_token(login.tokens.refresh_token)
        expired = create_refresh_token(login.account.id, record.token_id, now=clock.now - timedelta(days=30))
        assert auth_service.logout(expired)
        assert auth_service.store.get_by_email(ADMIN_EMAIL).active_sessions == []


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


class TestAccessTokens:
    def test_resolves_account(self, auth_service):
        tokens = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens
        assert auth_service.authenticate_access_token(tokens.access_token).email == ADMIN_EMAIL

    def test_rejects_missing_and_refresh_tokens(self, auth_service):
        tokens = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens
        for bad in (None, "", tokens.refresh_token):
            with pytest.raises(AuthenticationFailure):
                auth_service.authenticate_access_token(bad)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_unknown_email_mutates_nothing(self, auth_service):
        before = _actions(auth_service)
        assert auth_service.request_password_reset("ghost@newsdesk.test") is None
        assert _actions(auth_service) == before

    def test_only_the_hash_is_stored(self, auth_service):
        raw = auth_service.request_password_reset(ADMIN_EMAIL)
        account = auth_service.store.get_by_email(ADMIN_EMAIL)
        assert account.reset_token_hash and account.reset_token_hash != raw
        assert account.reset_token_expire is not None

    def test_reset_revokes_every_session_and_changes_password(self, auth_service):
        first = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        second = auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD).tokens.refresh_token
        raw = auth_service.request_password_reset(ADMIN_EMAIL)

        assert auth_service.reset_password(ADMIN_EMAIL, raw, "brand-new-pass") == 2
        for token in (first, second):
            with pytest.raises(InvalidRefreshToken):
                auth_service.refresh(token)
        account = auth_service.store.get_by_email(ADMIN_EMAIL)
        assert verify_password("brand-new-pass", account.password_hash)
        assert account.reset_token_hash is None
        with pytest.raises(InvalidCredentials):
            auth_service.login(ADMIN_EMAIL, ADMIN_PASSWORD)

    def test_reset_clears_lockout(self, auth_service):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                auth_service.login(ADMIN_EMAIL, "wrong")
        raw = auth_service.request_password_reset(ADMIN_EMAIL)
        auth_service.reset_password(ADMIN_EMAIL, raw, "brand-new-pass")
        auth_service.login(ADMIN_EMAIL, "brand-new-pass")

    def test_token_is_single_use(self, auth_service):
        raw = auth_service.request_password_reset(ADMIN_EMAIL)
        auth_service.reset_password(ADMIN_EMAIL, raw, "brand-new-pass")
        with pytest.raises(InvalidResetToken):
            auth_service.reset_password(ADMIN_EMAIL, raw, "another-pass")

    def test_expired_token_rejected(self, auth_service, clock):
        raw = auth_service.request_password_reset(ADMIN_EMAIL)
        clock.advance(hours=1, seconds=1)
        with pytest.raises(InvalidResetToken):
            auth_service.reset_password(ADMIN_EMAIL, raw, "brand-new-pass")

    def test_wrong_token_or_email_rejected(self, auth_service):
        raw = auth_service.request_password_reset(ADMIN_EMAIL)
        with pytest.raises(InvalidResetToken):
            auth_service.reset_password(ADMIN_EMAIL, raw[::-1], "brand-new-pass")
        with pytest.raises(InvalidResetToken):
            auth_service.reset_password("ghost@newsdesk.test", raw, "brand-new-pass")

    def test_no_outstanding_token(self, auth_service):
        with pytest.raises(InvalidResetToken):
            auth_service.reset_password(ADMIN_EMAIL, "0" * 48, "brand-new-pass")


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


def test_seed_admin_is_idempotent(account_store):
    from auth.service import AuthService

    service = AuthService(account_store)
    account_id = service.seed_admin("Boss@Newsdesk.test", "initial-pass", "Boss")
    assert account_id is not None
    assert service.seed_admin("boss@newsdesk.test", "other-pass") is None
    account = account_store.get_by_id(account_id)
    assert account.name == "Boss"
    assert account.role == "admin"
    assert verify_password("initial-pass", account.password_hash)


def test_record_activity_writes_a_targeted_audit_event(auth_service, account_store, clock):
    account = account_store.get_by_email(ADMIN_EMAIL)
    auth_service.record_activity("delete_post", account, "7", "10.0.0.9")
    event = account_store.list_audit(account.id)[0]
    assert (event.action, event.target_id, event.ip, event.email) == ("delete_post", "7", "10.0.0.9", ADMIN_EMAIL)
    assert event.created_at == clock.now
