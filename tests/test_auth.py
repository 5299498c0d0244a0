from datetime import timedelta

from sqlalchemy import select

from crustops.models import OtpCode, User
from crustops.services.otp import generate_code, issue_code, purge_expired_codes, utc_now_naive


def test_generate_code_has_no_leading_zero():
    for _ in range(50):
        code = generate_code(6)
        assert len(code) == 6
        assert code.isdigit()
        assert code[0] != "0"


async def latest_code(db, phone):
    result = await db.execute(
        select(OtpCode.code).where(OtpCode.phone == phone).order_by(OtpCode.expires_at.desc())
    )
    return result.scalars().first()


async def test_login_flow_creates_user(client, db, queued):
    sent = await client.post("/api/auth/send-otp", json={"phone": "5551234567"})
    assert sent.status_code == 200
    assert sent.json() == {"message": "OTP sent successfully"}

    code = await latest_code(db, "5551234567")
    ((to_phone, message),) = queued["sms"].calls
    assert to_phone == "5551234567"
    assert code in message

    verified = await client.post("/api/auth/verify-otp", json={"phone": "5551234567", "code": code})
    assert verified.status_code == 200
    user = verified.json()["user"]
    assert user["phone"] == "5551234567"
    assert user["name"] == "Valued Customer"

    me = await client.get("/api/auth/me", params={"user_id": user["id"]})
    assert me.json()["id"] == user["id"]


async def test_code_is_single_use(client, db):
    await client.post("/api/auth/send-otp", json={"phone": "5551234567"})
    code = await latest_code(db, "5551234567")

    first = await client.post("/api/auth/verify-otp", json={"phone": "5551234567", "code": code})
    assert first.status_code == 200

    second = await client.post("/api/auth/verify-otp", json={"phone": "5551234567", "code": code})
    assert second.status_code == 401
    assert second.json()["detail"] == "Invalid or expired code"


async def test_second_login_reuses_user(client, db):
    ids = []
    for _ in range(2):
        await client.post("/api/auth/send-otp", json={"phone": "5559876543"})
        code = await latest_code(db, "5559876543")
        verified = await client.post("/api/auth/verify-otp", json={"phone": "5559876543", "code": code})
        ids.append(verified.json()["user"]["id"])

    assert ids[0] == ids[1]


async def test_wrong_code(client):
    await client.post("/api/auth/send-otp", json={"phone": "5551234567"})

    response = await client.post("/api/auth/verify-otp", json={"phone": "5551234567", "code": "000000"})

    assert response.status_code == 401


async def test_expired_code(client, db):
    otp = await issue_code(db, "5551112222")
    otp.expires_at = utc_now_naive() - timedelta(minutes=1)
    await db.commit()

    response = await client.post("/api/auth/verify-otp", json={"phone": "5551112222", "code": otp.code})

    assert response.status_code == 401
    assert await purge_expired_codes(db) == 1


async def test_blank_phone(client):
    response = await client.post("/api/auth/send-otp", json={"phone": "   "})

    assert response.status_code == 400


async def test_me_requires_user(client):
    anonymous = await client.get("/api/auth/me")
    assert anonymous.status_code == 401

    unknown = await client.get("/api/auth/me", params={"user_id": "missing"})
    assert unknown.status_code == 404


async def test_update_profile(client, db):
    await client.post("/api/auth/send-otp", json={"phone": "5551234567"})
    code = await latest_code(db, "5551234567")
    verified = await client.post("/api/auth/verify-otp", json={"phone": "5551234567", "code": code})
    user_id = verified.json()["user"]["id"]

    response = await client.patch(f"/api/users/{user_id}", json={"name": "Jane", "email": "jane@example.com"})

    assert response.status_code == 200
    assert response.json()["name"] == "Jane"
    assert response.json()["email"] == "jane@example.com"


async def test_profile_name_cannot_be_null(client, db):
    user = User(phone="5559876543", name="Jane")
    db.add(user)
    await db.commit()

    blank = await client.patch(f"/api/users/{user.id}", json={"name": None})
    cleared = await client.patch(f"/api/users/{user.id}", json={"email": None})

    assert blank.status_code == 422
    assert cleared.status_code == 200
    assert cleared.json()["name"] == "Jane"
