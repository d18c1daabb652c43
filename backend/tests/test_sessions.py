from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from bookclub.core.errors import SessionExpired, SessionNotFound, SessionRejected
from bookclub.core.time import utcnow
from bookclub.repos.sessions import count_sessions_for_user, get_session_by_p1
from bookclub.repos.users import create_user
from bookclub.services import sessions


@pytest.fixture
def user(db):
    return create_user(db, email="Reader@Example.com", first_name="Rea", last_name="Der")


def test_issue_then_verify_returns_user(db, user):
    cred = sessions.issue(db, user.id)

    assert sessions.authenticate(db, cred.p1, cred.p2) == user.id
    assert cred.p1 != cred.p2
    assert cred.expires_at > utcnow() + timedelta(hours=23)


def test_secret_half_is_stored_hashed(db, user):
    cred = sessions.issue(db, user.id)
    row = get_session_by_p1(db, cred.p1)

    assert row is not None
    assert row.session_token_p2_hash != cred.p2
    assert cred.p2 not in row.session_token_p2_hash
    assert row.csrf_token == cred.csrf_token


def test_wrong_secret_is_rejected_like_unknown_session(db, user):
    cred = sessions.issue(db, user.id)
    near_miss = cred.p2[:-1] + ("0" if cred.p2[-1] != "0" else "1")

    with pytest.raises(SessionNotFound):
        sessions.verify(db, cred.p1, near_miss)
    with pytest.raises(SessionNotFound):
        sessions.verify(db, "0" * 64, cred.p2)

    # A bad guess does not burn the session.
    assert sessions.authenticate(db, cred.p1, cred.p2) == user.id


def test_expired_session_is_rejected_and_deleted(db, user):
    issued_at = utcnow() - timedelta(hours=25)
    cred = sessions.issue(db, user.id, now=issued_at)

    with pytest.raises(SessionExpired):
        sessions.verify(db, cred.p1, cred.p2)
    assert get_session_by_p1(db, cred.p1) is None

    with pytest.raises(SessionNotFound):
        sessions.verify(db, cred.p1, cred.p2)


def test_expired_and_missing_share_public_message():
    assert issubclass(SessionExpired, SessionRejected)
    assert issubclass(SessionNotFound, SessionRejected)
    assert str(SessionExpired()) == str(SessionNotFound())


def test_verify_at_explicit_times(db, user):
    t = utcnow()
    cred = sessions.issue(db, user.id, now=t)

    assert sessions.authenticate(db, cred.p1, cred.p2, now=t + timedelta(hours=1)) == user.id
    with pytest.raises(SessionExpired):
        sessions.authenticate(db, cred.p1, cred.p2, now=t + timedelta(hours=25))


def test_revoke_is_idempotent(db, user):
    cred = sessions.issue(db, user.id)

    sessions.revoke(db, cred.p1)
    sessions.revoke(db, cred.p1)
    sessions.revoke(db, "never-issued")

    with pytest.raises(SessionNotFound):
        sessions.verify(db, cred.p1, cred.p2)


def test_revoke_all_for_user(db, user):
    other = create_user(db, email="other@example.com", first_name="O", last_name="Ther")
    mine = [sessions.issue(db, user.id) for _ in range(3)]
    theirs = sessions.issue(db, other.id)

    assert sessions.revoke_all_for_user(db, user.id) == 3
    assert count_sessions_for_user(db, user_id=user.id) == 0
    for cred in mine:
        with pytest.raises(SessionNotFound):
            sessions.verify(db, cred.p1, cred.p2)
    assert sessions.authenticate(db, theirs.p1, theirs.p2) == other.id


def test_issue_regenerates_on_lookup_key_collision(db, user, monkeypatch):
    first = sessions.issue(db, user.id)
    pairs = iter([(first.p1, "a" * 64), ("b" * 64, "c" * 64)])
    monkeypatch.setattr(sessions, "new_session_token_pair", lambda: next(pairs))

    second = sessions.issue(db, user.id)

    assert second.p1 == "b" * 64
    assert sessions.authenticate(db, first.p1, first.p2) == user.id
    assert sessions.authenticate(db, second.p1, second.p2) == user.id


def test_credential_round_trips_through_cookie_value(db, user):
    cred = sessions.issue(db, user.id)
    assert sessions.parse_credential(cred.token) == (cred.p1, cred.p2)


@pytest.mark.parametrize("raw", ["", "_", "abc", "abc_", "_abc"])
def test_malformed_credentials_are_rejected(raw):
    with pytest.raises(SessionNotFound):
        sessions.parse_credential(raw)


def test_credential_repr_hides_secret(db, user):
    cred = sessions.issue(db, user.id)
    assert cred.p2 not in repr(cred)
    assert cred.p1 in repr(cred)


def test_issue_never_logs_secret(db, user, caplog):
    caplog.set_level("DEBUG", logger="bookclub")
    cred = sessions.issue(db, user.id)
    sessions.verify(db, cred.p1, cred.p2)
    sessions.revoke(db, cred.p1)

    assert cred.p1 in caplog.text
    assert cred.p2 not in caplog.text


def test_issue_does_not_retry_other_integrity_failures(db, user, monkeypatch, caplog):
    # An expiry that is not after creation trips the check constraint, not the p1 index.
    monkeypatch.setattr(sessions, "default_session_expiry", lambda now: now)
    caplog.set_level("WARNING", logger="bookclub")

    with pytest.raises(IntegrityError):
        sessions.issue(db, user.id)

    assert "collision" not in caplog.text
    assert count_sessions_for_user(db, user_id=user.id) == 0


def test_verify_time_does_not_track_matching_secret_prefix(db, user):
    import statistics
    import time

    cred = sessions.issue(db, user.id)

    def flip(ch: str) -> str:
        return "0" if ch != "0" else "1"

    wrong_first = flip(cred.p2[0]) + cred.p2[1:]
    wrong_last = cred.p2[:-1] + flip(cred.p2[-1])

    def batch(candidate: str) -> int:
        t0 = time.perf_counter_ns()
        for _ in range(20):
            with pytest.raises(SessionNotFound):
                sessions.verify(db, cred.p1, candidate)
        return time.perf_counter_ns() - t0

    early, late = [], []
    for _ in range(100):
        early.append(batch(wrong_first))
        late.append(batch(wrong_last))

    ratio = statistics.median(late) / statistics.median(early)
    assert 0.6 < ratio < 1.6, ratio
    assert sessions.authenticate(db, cred.p1, cred.p2) == user.id
