from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from app.api.errors import NotFoundError, UnauthorizedError
from app.auth.models import User
from app.auth.repository import AuthRepository
from app.auth.sessions import INVALID_REFRESH_MESSAGE, SessionManager
from tests.auth_fixtures import FakeClock

TTL = 3600


def _setup(tmp_path: Path) -> tuple[AuthRepository, SessionManager, FakeClock, str]:
    clock = FakeClock()
    repo = AuthRepository(tmp_path / "state.db")
    user = repo.create_user(
        User(id=uuid.uuid4().hex, email="s@example.com", password_hash="h")
    )
    manager = SessionManager(repo, refresh_token_ttl_seconds=TTL, clock=clock)
    return repo, manager, clock, user.id


def test_create_session_issues_random_token_with_ttl(tmp_path: Path) -> None:
    repo, manager, clock, user_id = _setup(tmp_path)

    first = manager.create_session(user_id, user_agent="pytest", ip_address="10.0.0.1")
    second = manager.create_session(user_id)

    assert first.refresh_token != second.refresh_token
    assert first.expires_at == int(clock()) + TTL
    assert first.user_agent == "pytest"
    repo.close()


def test_rotate_replaces_token_and_old_token_stops_working(tmp_path: Path) -> None:
    repo, manager, clock, user_id = _setup(tmp_path)
    session = manager.create_session(user_id)
    clock.advance(60)

    rotated = manager.rotate(session.refresh_token)

    assert rotated.id == session.id
    assert rotated.refresh_token != session.refresh_token
    assert rotated.expires_at == int(clock()) + TTL
    with pytest.raises(UnauthorizedError) as exc:
        manager.rotate(session.refresh_token)
    assert exc.value.message == INVALID_REFRESH_MESSAGE
    repo.close()


def test_rotate_deletes_expired_session(tmp_path: Path) -> None:
    repo, manager, clock, user_id = _setup(tmp_path)
    session = manager.create_session(user_id)
    clock.advance(TTL)

    with pytest.raises(UnauthorizedError):
        manager.rotate(session.refresh_token)

    assert repo.get_session_by_token(session.refresh_token) is None
    repo.close()


def test_rotate_rejects_unknown_and_empty_tokens(tmp_path: Path) -> None:
    repo, manager, _clock, _user_id = _setup(tmp_path)

    for token in ["", "never-issued"]:
        with pytest.raises(UnauthorizedError):
            manager.rotate(token)
    repo.close()


def test_concurrent_rotation_of_same_token_has_single_winner(tmp_path: Path) -> None:
    repo, manager, _clock, user_id = _setup(tmp_path)
    session = manager.create_session(user_id)
    barrier = threading.Barrier(8)

    def attempt() -> str | None:
        barrier.wait()
        try:
            return manager.rotate(session.refresh_token).refresh_token
        except UnauthorizedError:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: attempt(), range(8)))

    winners = [token for token in results if token is not None]
    assert len(winners) == 1
    assert repo.get_session_by_token(winners[0]) is not None
    repo.close()


def test_revoke_is_idempotent(tmp_path: Path) -> None:
    repo, manager, _clock, user_id = _setup(tmp_path)
    session = manager.create_session(user_id)

    assert manager.revoke(session.refresh_token) is True
    assert manager.revoke(session.refresh_token) is False
    assert manager.revoke("") is False
    repo.close()


def test_revoke_by_id_hides_other_users_sessions(tmp_path: Path) -> None:
    repo, manager, _clock, user_id = _setup(tmp_path)
    intruder = repo.create_user(
        User(id=uuid.uuid4().hex, email="intruder@example.com", password_hash="h")
    )
    session = manager.create_session(user_id)

    with pytest.raises(NotFoundError):
        manager.revoke_by_id(session.id, intruder.id)
    with pytest.raises(NotFoundError):
        manager.revoke_by_id("missing", user_id)

    assert repo.get_session_by_token(session.refresh_token) is not None
    manager.revoke_by_id(session.id, user_id)
    assert repo.get_session_by_token(session.refresh_token) is None
    repo.close()


def test_list_and_purge_skip_expired_sessions(tmp_path: Path) -> None:
    repo, manager, clock, user_id = _setup(tmp_path)
    manager.create_session(user_id, ttl_seconds=10)
    live = manager.create_session(user_id)
    clock.advance(10)

    active = manager.list_active_for_user(user_id)

    assert [session.id for session in active] == [live.id]
    assert manager.purge_expired() == 1
    assert manager.revoke_all_for_user(user_id) == 1
    repo.close()
