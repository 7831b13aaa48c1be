from datetime import timedelta

from sqlalchemy import func, select

from bookstore import models
from bookstore.auth import ACCESS, _create_token
from bookstore.conftest import PASSWORD, RESET_LINK, VERIFY_LINK, RecordingMailer
from bookstore.main import app

NEW_PASSWORD = "Changed456"


def register(client, email="new@example.com", password=PASSWORD, name="New Reader"):
    return client.post("/auth/register", json={"name": name, "email": email, "password": password})


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_register_and_login(client, mailer):
    response = register(client, email="New@Example.com")
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    user = body["data"]["user"]
    assert user["email"] == "new@example.com"
    assert user["role"] == "user"
    assert not user["is_email_verified"]
    assert "password" not in user
    assert body["data"]["tokens"]["access_token"]
    assert mailer.last_token(VERIFY_LINK, "new@example.com")

    response = client.post("/auth/login", json={"email": "new@example.com", "password": PASSWORD})
    assert response.status_code == 200
    access_token = response.json()["data"]["tokens"]["access_token"]

    me = client.get("/auth/me", headers=bearer(access_token))
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == "new@example.com"


def test_register_duplicate_email(client):
    register(client)
    response = register(client, email="NEW@example.com")
    assert response.status_code == 400
    assert response.json()["message"] == "User with this email already exists"


def test_register_survives_mail_failure(client):
    app.state.mailer = RecordingMailer(fail=True)
    response = register(client)
    assert response.status_code == 201


def test_login_failures_are_uniform(client, db_session, reader):
    unknown = client.post("/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    wrong = client.post("/auth/login", json={"email": reader.email, "password": "Wrong999"})

    reader.is_active = False
    db_session.commit()
    inactive = client.post("/auth/login", json={"email": reader.email, "password": PASSWORD})

    for response in (unknown, wrong, inactive):
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"


def test_verify_email_once(client, mailer):
    token = register(client).json()["data"]["tokens"]["access_token"]
    verification = mailer.last_token(VERIFY_LINK)

    response = client.get(f"/auth/verify-email/{verification}")
    assert response.status_code == 200
    assert client.get("/auth/me", headers=bearer(token)).json()["data"]["user"]["is_email_verified"]
    assert any(message["subject"] == "Welcome to the Bookstore" for message in mailer.sent)

    again = client.get(f"/auth/verify-email/{verification}")
    assert again.status_code == 400
    assert again.json()["message"] == "Invalid or expired token"


def test_resend_verification_keeps_one_live_token(client, db_session, mailer):
    body = register(client).json()["data"]
    token = body["tokens"]["access_token"]
    first = mailer.last_token(VERIFY_LINK)

    response = client.post("/auth/resend-verification", headers=bearer(token))
    assert response.status_code == 200
    second = mailer.last_token(VERIFY_LINK)
    assert second != first

    count = db_session.scalar(
        select(func.count()).select_from(models.OneTimeToken).where(
            models.OneTimeToken.user_id == body["user"]["id"],
            models.OneTimeToken.type == models.EMAIL_VERIFICATION,
        )
    )
    assert count == 1
    assert client.get(f"/auth/verify-email/{first}").status_code == 400
    assert client.get(f"/auth/verify-email/{second}").status_code == 200

    already = client.post("/auth/resend-verification", headers=bearer(token))
    assert already.status_code == 400
    assert already.json()["message"] == "Email is already verified"


def test_forgot_password_does_not_reveal_accounts(client, reader, mailer):
    known = client.post("/auth/forgot-password", json={"email": reader.email})
    unknown = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json()["message"] == unknown.json()["message"]
    assert len(mailer.sent) == 1


def test_forgot_password_mail_failure_revokes_token(client, db_session, reader):
    app.state.mailer = RecordingMailer(fail=True)
    response = client.post("/auth/forgot-password", json={"email": reader.email})
    assert response.status_code == 500
    assert response.json() == {"status": "error", "message": "Error sending email. Please try again later."}
    assert db_session.scalar(select(func.count()).select_from(models.OneTimeToken)) == 0


def test_reset_password_flow(client, reader, mailer):
    old_session = client.post("/auth/login", json={"email": reader.email, "password": PASSWORD}).json()["data"]
    client.post("/auth/forgot-password", json={"email": reader.email})
    reset_token = mailer.last_token(RESET_LINK, reader.email)

    mismatch = client.post(
        f"/auth/reset-password/{reset_token}",
        json={"password": NEW_PASSWORD, "confirm_password": "Other789"},
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["message"] == "Passwords do not match"

    payload = {"password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD}
    response = client.post(f"/auth/reset-password/{reset_token}", json=payload)
    assert response.status_code == 200

    reused = client.post(f"/auth/reset-password/{reset_token}", json=payload)
    assert reused.status_code == 400

    stale = client.get("/auth/me", headers=bearer(old_session["tokens"]["access_token"]))
    assert stale.status_code == 401
    assert stale.json()["message"] == "User recently changed password. Please log in again."

    refreshed = client.post("/auth/refresh-token", json={"refresh_token": old_session["tokens"]["refresh_token"]})
    assert refreshed.status_code == 401

    assert client.post("/auth/login", json={"email": reader.email, "password": PASSWORD}).status_code == 401
    assert client.post("/auth/login", json={"email": reader.email, "password": NEW_PASSWORD}).status_code == 200


def test_change_password_invalidates_older_tokens(client, reader, reader_headers):
    payload = {"current_password": PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD}
    response = client.post("/auth/change-password", json=payload, headers=reader_headers)
    assert response.status_code == 200
    fresh = response.json()["data"]["tokens"]["access_token"]

    assert client.get("/auth/me", headers=reader_headers).status_code == 401
    assert client.get("/auth/me", headers=bearer(fresh)).status_code == 200


def test_change_password_rules(client, reader_headers):
    wrong = client.post(
        "/auth/change-password",
        json={"current_password": "Nope1234", "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        headers=reader_headers,
    )
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Current password is incorrect"

    same = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": PASSWORD, "confirm_password": PASSWORD},
        headers=reader_headers,
    )
    assert same.status_code == 400
    assert same.json()["message"] == "New password must be different from current password"


def test_refresh_rotates_and_logout_revokes(client, reader):
    session = client.post("/auth/login", json={"email": reader.email, "password": PASSWORD}).json()["data"]
    refresh_token = session["tokens"]["refresh_token"]

    rotated = client.post("/auth/refresh-token", json={"refresh_token": refresh_token})
    assert rotated.status_code == 200
    new_tokens = rotated.json()["data"]["tokens"]
    assert new_tokens["refresh_token"] != refresh_token

    replayed = client.post("/auth/refresh-token", json={"refresh_token": refresh_token})
    assert replayed.status_code == 401

    logout = client.post("/auth/logout", headers=bearer(new_tokens["access_token"]))
    assert logout.status_code == 200
    after_logout = client.post("/auth/refresh-token", json={"refresh_token": new_tokens["refresh_token"]})
    assert after_logout.status_code == 401


def test_access_token_cannot_refresh(client, reader_headers):
    access_token = reader_headers["Authorization"].split()[1]
    response = client.post("/auth/refresh-token", json={"refresh_token": access_token})
    assert response.status_code == 401


def test_deactivated_user_is_locked_out(client, db_session, reader, reader_headers):
    reader.is_active = False
    db_session.commit()
    response = client.get("/auth/me", headers=reader_headers)
    assert response.status_code == 401
    assert response.json()["message"] == "Your account has been deactivated. Please contact support."


def test_update_profile(client, reader_headers):
    response = client.patch("/auth/update-profile", json={"name": "Renamed"}, headers=reader_headers)
    assert response.status_code == 200
    assert response.json()["data"]["user"]["name"] == "Renamed"

    refused = client.patch("/auth/update-profile", json={"email": "x@example.com"}, headers=reader_headers)
    assert refused.status_code == 400
    assert refused.json()["message"] == "This route is not for password or email updates"


def test_expired_access_token_gets_its_own_message(client, reader):
    expired = _create_token(reader.id, ACCESS, timedelta(seconds=-30))
    response = client.get("/auth/me", headers=bearer(expired))
    assert response.status_code == 401
    assert response.json()["message"] == "Your token has expired. Please log in again."

    forged = client.get("/auth/me", headers=bearer(expired[:-4] + "abcd"))
    assert forged.status_code == 401
    assert forged.json()["message"] == "Invalid token. Please log in again."


def test_token_of_deleted_user_is_rejected(client, db_session, reader, reader_headers):
    db_session.delete(reader)
    db_session.commit()
    response = client.get("/auth/me", headers=reader_headers)
    assert response.status_code == 401
    assert response.json()["message"] == "The user belonging to this token no longer exists."
