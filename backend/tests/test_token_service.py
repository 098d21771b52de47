from datetime import timedelta

import pytest

from competition_portal.core.database import as_utc, utcnow
from competition_portal.core.errors import (
    AlreadyUsedError,
    AlreadyVerifiedError,
    ExpiredError,
    InvalidTokenError,
    PortalError,
)
from competition_portal.models import PasswordResetToken, VerificationToken
from competition_portal.services.token_service import token_service


def _verification_record(db, token):
    return db.query(VerificationToken).filter(VerificationToken.token == token).one()


def _reset_record(db, token):
    return db.query(PasswordResetToken).filter(PasswordResetToken.token == token).one()


def test_verification_token_shape_and_expiry(db, make_user):
    user = make_user(verified=False, active=False)
    token = token_service.create_verification_token(db, user.id)

    assert len(token) == 64
    int(token, 16)  # hex encoded
    record = _verification_record(db, token)
    lifetime = as_utc(record.expires_at) - utcnow()
    assert timedelta(hours=23, minutes=59) < lifetime <= timedelta(hours=24)
    assert record.used is False


def test_verify_email_token_activates_user(db, make_user):
    user = make_user(verified=False, active=False)
    token = token_service.create_verification_token(db, user.id)

    assert token_service.verify_email_token(db, token) == user.id

    db.expire_all()
    assert _verification_record(db, token).used is True
    assert user.is_email_verified is True
    assert user.is_active is True


def test_unknown_verification_token_is_invalid(db):
    with pytest.raises(InvalidTokenError):
        token_service.verify_email_token(db, "0" * 64)


def test_used_token_rejected_before_expiry(db, make_user):
    user = make_user(verified=False, active=False)
    token = token_service.create_verification_token(db, user.id)
    record = _verification_record(db, token)
    record.used = True
    db.commit()

    with pytest.raises(AlreadyUsedError):
        token_service.verify_email_token(db, token)


def test_expired_token_rejected_whether_used_or_not(db, make_user):
    user = make_user(verified=False, active=False)
    fresh = token_service.create_verification_token(db, user.id)
    stale = token_service.create_verification_token(db, user.id)
    for token, used in ((fresh, False), (stale, True)):
        record = _verification_record(db, token)
        record.expires_at = utcnow() - timedelta(seconds=1)
        record.used = used
    db.commit()

    with pytest.raises(ExpiredError):
        token_service.verify_email_token(db, fresh)
    with pytest.raises(PortalError):
        token_service.verify_email_token(db, stale)

    db.expire_all()
    assert user.is_email_verified is False


def test_verification_of_already_verified_user(db, make_user):
    user = make_user(verified=True)
    token = token_service.create_verification_token(db, user.id)

    with pytest.raises(AlreadyVerifiedError):
        token_service.verify_email_token(db, token)
    db.expire_all()
    assert _verification_record(db, token).used is False


def test_used_check_runs_before_already_verified(db, make_user):
    user = make_user(verified=False, active=False)
    first = token_service.create_verification_token(db, user.id)
    second = token_service.create_verification_token(db, user.id)
    token_service.verify_email_token(db, first)

    with pytest.raises(AlreadyUsedError):
        token_service.verify_email_token(db, first)
    # A second live token for a now verified user
    with pytest.raises(AlreadyVerifiedError):
        token_service.verify_email_token(db, second)


def test_any_live_verification_token_verifies(db, make_user):
    user = make_user(verified=False, active=False)
    older = token_service.create_verification_token(db, user.id)
    token_service.create_verification_token(db, user.id)

    assert token_service.verify_email_token(db, older) == user.id


def test_reset_token_reissue_leaves_one_active(db, make_user):
    user = make_user()
    tokens = [token_service.create_password_reset_token(db, user.id) for _ in range(3)]

    db.expire_all()
    now = utcnow()
    active = [
        record for record in db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user.id)
        if not record.used and as_utc(record.expires_at) > now
    ]
    assert [record.token for record in active] == [tokens[-1]]

    with pytest.raises(AlreadyUsedError):
        token_service.verify_password_reset_token(db, tokens[0])
    assert token_service.verify_password_reset_token(db, tokens[-1]) == user.id


def test_reset_token_lifetime_is_one_hour(db, make_user):
    user = make_user()
    token = token_service.create_password_reset_token(db, user.id)
    lifetime = as_utc(_reset_record(db, token).expires_at) - utcnow()
    assert timedelta(minutes=59) < lifetime <= timedelta(hours=1)


def test_verify_reset_token_does_not_consume(db, make_user):
    user = make_user()
    token = token_service.create_password_reset_token(db, user.id)

    token_service.verify_password_reset_token(db, token)
    token_service.verify_password_reset_token(db, token)

    token_service.mark_password_reset_token_as_used(db, token)
    with pytest.raises(AlreadyUsedError):
        token_service.verify_password_reset_token(db, token)


def test_expired_reset_token(db, make_user):
    user = make_user()
    token = token_service.create_password_reset_token(db, user.id)
    _reset_record(db, token).expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(ExpiredError):
        token_service.verify_password_reset_token(db, token)


def test_resend_cooldown(db, make_user):
    user = make_user(verified=False, active=False)
    assert token_service.can_resend_verification_email(db, user.id) == (True, 0)

    token = token_service.create_verification_token(db, user.id)
    can_resend, wait_time = token_service.can_resend_verification_email(db, user.id)
    assert can_resend is False
    assert 0 < wait_time <= 300

    _verification_record(db, token).created_at = utcnow() - timedelta(minutes=6)
    db.commit()
    assert token_service.can_resend_verification_email(db, user.id) == (True, 0)


def test_cleanup_expired_removes_exactly_expired(db, make_user):
    user = make_user()
    live_verification = token_service.create_verification_token(db, user.id)
    dead_verification = token_service.create_verification_token(db, user.id)
    live_reset = token_service.create_password_reset_token(db, user.id)
    dead_reset = PasswordResetToken(
        token="f" * 64, user_id=user.id, expires_at=utcnow() - timedelta(hours=2), used=True)
    db.add(dead_reset)
    _verification_record(db, dead_verification).expires_at = utcnow() - timedelta(hours=1)
    db.commit()

    result = token_service.cleanup_expired_tokens(db)

    assert result == {
        "deleted_verification_tokens": 1,
        "deleted_password_reset_tokens": 1,
        "total_deleted": 2,
    }
    remaining = {record.token for record in db.query(VerificationToken)}
    remaining |= {record.token for record in db.query(PasswordResetToken)}
    assert remaining == {live_verification, live_reset}


def test_cleanup_used_respects_retention(db, make_user):
    user = make_user()
    old_used = token_service.create_verification_token(db, user.id)
    recent_used = token_service.create_verification_token(db, user.id)
    old_unused = token_service.create_verification_token(db, user.id)

    record = _verification_record(db, old_used)
    record.used = True
    record.created_at = utcnow() - timedelta(days=8)
    _verification_record(db, recent_used).used = True
    _verification_record(db, old_unused).created_at = utcnow() - timedelta(days=8)
    db.commit()

    result = token_service.cleanup_used_tokens(db)

    assert result["deleted_verification_tokens"] == 1
    assert result["total_deleted"] == 1
    remaining = {record.token for record in db.query(VerificationToken)}
    assert remaining == {recent_used, old_unused}


def test_full_cleanup_and_statistics(db, make_user):
    user = make_user()
    token_service.create_verification_token(db, user.id)
    expired = token_service.create_verification_token(db, user.id)
    _verification_record(db, expired).expires_at = utcnow() - timedelta(hours=1)
    token_service.create_password_reset_token(db, user.id)
    token_service.create_password_reset_token(db, user.id)
    db.commit()

    stats = token_service.get_token_statistics(db)
    assert stats["verification_tokens"] == {"total": 2, "expired": 1, "used": 0, "active": 1}
    assert stats["password_reset_tokens"] == {"total": 2, "expired": 0, "used": 1, "active": 1}

    result = token_service.perform_full_cleanup(db)
    assert result["expired_cleanup"]["total_deleted"] == 1
    # The superseded reset token is used but younger than the retention window
    assert result["used_cleanup"]["total_deleted"] == 0
    assert result["grand_total"] == 1
