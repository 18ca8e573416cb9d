"""Tests for profiles, user browsing, password reset and account retention."""

import io

from conftest import PASSWORD, reset_token_from
from models import RevokedToken, User


def test_me_returns_private_profile(make_member):
    member = make_member()

    res = member.client.get('/api/users/me')

    assert res.status_code == 200
    user = res.get_json()["user"]
    assert user["email"] == "a@x.com"
    assert user["bio"] == ""
    assert user["avatarUrl"] == ""


def test_update_profile_with_json_fields(make_member):
    member = make_member()

    res = member.client.put('/api/users/update-profile', json={
        "firstName": " Ada ", "lastName": "Lovelace", "bio": "Counting engines",
        "email": "hijack@x.com",
    })

    assert res.status_code == 200
    user = res.get_json()["user"]
    assert user["firstName"] == "Ada"
    assert user["bio"] == "Counting engines"
    assert user["email"] == "a@x.com"


def test_update_profile_with_avatar_upload(make_member):
    member = make_member()

    res = member.client.put('/api/users/update-profile', data={
        "firstName": "Ada",
        "avatar": (io.BytesIO(b"\x89PNG fake"), "me.png"),
    }, content_type='multipart/form-data')

    assert res.status_code == 200
    avatar_url = res.get_json()["user"]["avatarUrl"]
    assert avatar_url.startswith("/uploads/avatars-") and avatar_url.endswith(".png")
    assert member.client.get(avatar_url).data == b"\x89PNG fake"


def test_update_profile_rejects_bad_input(make_member):
    member = make_member()

    assert member.client.put('/api/users/update-profile', json={"firstName": ""}).status_code == 400
    assert member.client.put('/api/users/update-profile', json={"bio": "x" * 501}).status_code == 400
    res = member.client.put('/api/users/update-profile', data={
        "avatar": (io.BytesIO(b"MZ"), "tool.exe"),
    }, content_type='multipart/form-data')
    assert res.status_code == 400


def test_list_users_shows_verified_users_except_viewer(app, make_member, signup):
    alice = make_member("alice@x.com", first="Alice")
    make_member("bob@x.com", first="Bob")
    signup(email="pending@x.com", first="Pending")

    anonymous = app.test_client().get('/api/users').get_json()["users"]
    assert sorted(u["firstName"] for u in anonymous) == ["Alice", "Bob"]
    assert all("email" not in u for u in anonymous)

    seen_by_alice = alice.client.get('/api/users').get_json()["users"]
    assert [u["firstName"] for u in seen_by_alice] == ["Bob"]

    assert len(app.test_client().get('/api/users?limit=1').get_json()["users"]) == 1


def test_list_users_ignores_bad_token(app, make_member):
    make_member()

    res = app.test_client().get('/api/users', headers={"Authorization": "Bearer garbage"})

    assert res.status_code == 200
    assert len(res.get_json()["users"]) == 1


def test_get_user_by_id(client, make_member):
    member = make_member()

    res = client.get(f'/api/users/{member.id}')
    assert res.status_code == 200
    assert res.get_json()["user"]["firstName"] == "A"

    res = client.get('/api/users/9999')
    assert res.status_code == 404
    assert res.get_json()["message"] == "User not found"


def test_reset_request_answers_the_same_for_unknown_email(client, make_member, outbox):
    make_member()
    sent_before = len(outbox)

    known = client.post('/api/users/request-reset', json={"email": "a@x.com"})
    unknown = client.post('/api/users/request-reset', json={"email": "ghost@x.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.get_json() == unknown.get_json()
    assert len(outbox) == sent_before + 1
    assert client.post('/api/users/request-reset', json={}).status_code == 400


def test_password_reset_flow(app, client, make_member, outbox):
    make_member()
    client.post('/api/users/request-reset', json={"email": "a@x.com"})
    token = reset_token_from(outbox[-1])

    res = client.post('/api/users/reset-password', json={
        "token": token, "email": "a@x.com", "newPassword": "NewSecret456!",
    })
    assert res.status_code == 200

    old = client.post('/api/auth/login', json={"email": "a@x.com", "password": PASSWORD})
    new = client.post('/api/auth/login', json={"email": "a@x.com", "password": "NewSecret456!"})
    assert old.status_code == 401
    assert new.status_code == 200

    reused = client.post('/api/users/reset-password', json={
        "token": token, "email": "a@x.com", "newPassword": "Another789!",
    })
    assert reused.status_code == 400
    assert reused.get_json()["error"] == "InvalidOrExpiredToken"

    with app.app_context():
        user = User.query.filter_by(email="a@x.com").one()
        assert user.password_reset_hash is None
        assert user.password_reset_expires_at is None


def test_password_reset_token_expires(client, make_member, outbox, clock):
    make_member()
    client.post('/api/users/request-reset', json={"email": "a@x.com"})
    token = reset_token_from(outbox[-1])
    clock.advance(hours=1, seconds=1)

    res = client.post('/api/users/reset-password', json={
        "token": token, "email": "a@x.com", "newPassword": "NewSecret456!",
    })

    assert res.status_code == 400
    assert res.get_json()["error"] == "InvalidOrExpiredToken"


def test_reset_password_requires_all_fields(client):
    res = client.post('/api/users/reset-password', json={"email": "a@x.com"})
    assert res.status_code == 400
    assert res.get_json()["error"] == "ValidationFailure"


def test_purge_expired_removes_only_stale_pending_accounts(app, make_member, signup, clock):
    make_member("verified@x.com")
    signup(email="stale@x.com")
    member = make_member("leaving@x.com")
    app.test_client().post('/api/auth/logout', headers=member.bearer)

    clock.advance(days=8)
    signup(email="fresh@x.com")

    result = app.test_cli_runner().invoke(args=['purge-expired'])

    assert result.exit_code == 0
    assert "Removed 1 unverified accounts and 1 revoked tokens" in result.output
    with app.app_context():
        emails = sorted(u.email for u in User.query.all())
        assert emails == ["fresh@x.com", "leaving@x.com", "verified@x.com"]
        assert RevokedToken.query.count() == 0
