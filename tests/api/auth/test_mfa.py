import pyotp
from tests.conftest import login, bearer, create_user


async def test_login_with_mfa_returns_temp_token(client, mfa_user):
    response = await login(client, mfa_user.email)

    assert response.status_code == 200
    data = response.json()
    assert data["mfa_required"] is True
    assert data["temp_token"]
    assert "refresh_token" not in data


async def test_mfa_verify_login(client, mfa_user):
    temp_token = (await login(client, mfa_user.email)).json()["temp_token"]

    response = await client.post("/auth/mfa/verify-login", json={
        "temp_token": temp_token,
        "code": pyotp.TOTP(mfa_user.mfa_secret).now()
    })

    assert response.status_code == 200
    data = response.json()
    assert data["access_token"]
    assert data["refresh_token"]
    assert data["user"]["mfa_enabled"] is True


async def test_mfa_invalid_temp_token(client):
    response = await client.post("/auth/mfa/verify-login", json={"temp_token": "bogus", "code": "123456"})

    assert response.status_code == 401


async def test_mfa_code_must_be_six_digits(client, mfa_user):
    temp_token = (await login(client, mfa_user.email)).json()["temp_token"]

    response = await client.post("/auth/mfa/verify-login", json={"temp_token": temp_token, "code": "12ab"})

    assert response.status_code == 422


async def test_mfa_lockout_after_three_failures(client, mfa_user):
    totp = pyotp.TOTP(mfa_user.mfa_secret)
    wrong = next(c for c in ("000000", "111111", "222222") if not totp.verify(c, valid_window=1))
    temp_token = (await login(client, mfa_user.email)).json()["temp_token"]

    statuses = []
    for _ in range(3):
        response = await client.post("/auth/mfa/verify-login", json={"temp_token": temp_token, "code": wrong})
        statuses.append(response.status_code)

    assert statuses == [401, 401, 403]

    # Correct code refused while locked out
    response = await client.post("/auth/mfa/verify-login", json={"temp_token": temp_token, "code": totp.now()})
    assert response.status_code == 403

    # Password login refused too
    assert (await login(client, mfa_user.email)).status_code == 403


async def test_mfa_enrolment_and_backup_code_login(client, session):
    user = create_user(session, "enrol@example.com")
    tokens = (await login(client, user.email)).json()

    setup = await client.post("/auth/mfa/setup", headers=bearer(tokens["access_token"]))
    assert setup.status_code == 200
    setup_data = setup.json()
    assert len(setup_data["backup_codes"]) == 10
    assert setup_data["qr_code_url"].startswith("otpauth://totp/")

    verify = await client.post(
        "/auth/mfa/verify-setup",
        json={"code": pyotp.TOTP(setup_data["secret"]).now()},
        headers=bearer(tokens["access_token"])
    )
    assert verify.status_code == 200

    temp_token = (await login(client, user.email)).json()["temp_token"]
    response = await client.post("/auth/mfa/verify-backup-code", json={
        "temp_token": temp_token,
        "backup_code": setup_data["backup_codes"][0]
    })

    assert response.status_code == 200
    assert "9 backup codes remaining" in response.json()["message"]


async def test_mfa_setup_twice_conflicts(client, mfa_user):
    # Log in through MFA to get an access token
    temp_token = (await login(client, mfa_user.email)).json()["temp_token"]
    tokens = (await client.post("/auth/mfa/verify-login", json={
        "temp_token": temp_token,
        "code": pyotp.TOTP(mfa_user.mfa_secret).now()
    })).json()

    response = await client.post("/auth/mfa/setup", headers=bearer(tokens["access_token"]))

    assert response.status_code == 409
