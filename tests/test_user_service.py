from datetime import timedelta

import pytest

from oauthgate.service.errors import AlreadyExistsError, NotFoundError, ValidationError
from oauthgate.service.users import UserService
from oauthgate.storage.models import Credential


@pytest.fixture
def users(identities, credentials):
    return UserService(identities, credentials)


def test_create_and_lookup_user(users):
    user = users.create_user("a@example.com", "google", "g-1")

    assert users.get_user(user.id).email == "a@example.com"
    assert users.get_user_by_email("a@example.com").id == user.id
    assert users.get_user_by_provider("google", "g-1").id == user.id


def test_create_rejects_duplicate_email(users):
    users.create_user("a@example.com", "google", "g-1")

    with pytest.raises(AlreadyExistsError):
        users.create_user("a@example.com", "google", "g-2")


def test_create_requires_fields(users):
    with pytest.raises(ValidationError):
        users.create_user("", "google", "g-1")


def test_missing_users_raise_not_found(users):
    with pytest.raises(NotFoundError):
        users.get_user("missing")
    with pytest.raises(NotFoundError):
        users.get_user_by_email("missing@example.com")
    with pytest.raises(NotFoundError):
        users.get_user_by_provider("google", "missing")


def test_update_user_bumps_updated_at(users):
    user = users.create_user("a@example.com", "google", "g-1")
    user.email = "b@example.com"

    updated = users.update_user(user)

    assert updated.email == "b@example.com"
    assert updated.updated_at >= user.updated_at
    assert updated.created_at == user.created_at
    assert users.get_user(user.id).email == "b@example.com"


def test_update_missing_user_raises(users):
    user = users.create_user("a@example.com", "google", "g-1")
    users.delete_user(user.id)

    with pytest.raises(NotFoundError):
        users.update_user(user)


def test_delete_user_revokes_credentials(users, credentials):
    user = users.create_user("a@example.com", "google", "g-1")
    credentials.create(Credential.new(user.id, timedelta(hours=1)))
    credentials.create(Credential.new(user.id, timedelta(hours=1)))
    other = credentials.create(Credential.new("someone-else", timedelta(hours=1)))

    assert users.delete_user(user.id) == 2

    with pytest.raises(NotFoundError):
        users.get_user(user.id)
    assert [c.id for c in credentials.find_by_user_id("someone-else")] == [other.id]
    with pytest.raises(NotFoundError):
        users.delete_user(user.id)
