import pytest

from app.services.contact_service import CONTACT_TABLE

PREFIX = "/api/v1/contact"

FORM = {
    "name": "Grace Hopper",
    "email": "grace@example.com",
    "subject": "Indexing",
    "message": "Is the journal indexed?",
}


@pytest.mark.asyncio
async def test_send_stores_message_and_mails(client, fake_db, mailer):
    resp = await client.post(f"{PREFIX}/send", json=FORM, headers={"User-Agent": "pytest-agent"})

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Your message has been sent successfully. We will respond shortly."
    row = fake_db.tables[CONTACT_TABLE][0]
    assert body["data"]["message_id"] == row["id"]
    assert row["user_agent"] == "pytest-agent"
    assert [m["to"] for m in mailer.sent] == ["grace@example.com", "editor@example.com"]


@pytest.mark.asyncio
async def test_send_rejects_invalid_form(client, fake_db):
    resp = await client.post(f"{PREFIX}/send", json={**FORM, "email": "nope"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert fake_db.tables.get(CONTACT_TABLE, []) == []


@pytest.mark.asyncio
async def test_admin_routes_require_admin(client, reader_headers):
    assert (await client.get(f"{PREFIX}/")).status_code in (401, 403)
    assert (await client.get(f"{PREFIX}/", headers=reader_headers)).status_code == 403


@pytest.mark.asyncio
async def test_admin_manages_messages(client, admin_headers):
    sent = await client.post(f"{PREFIX}/send", json=FORM)
    message_id = sent.json()["data"]["message_id"]

    listing = await client.get(f"{PREFIX}/", params={"status": "new"}, headers=admin_headers)
    assert listing.status_code == 200
    assert [m["id"] for m in listing.json()["data"]["items"]] == [message_id]

    opened = await client.get(f"{PREFIX}/{message_id}", headers=admin_headers)
    assert opened.json()["data"]["message"]["status"] == "read"

    updated = await client.patch(
        f"{PREFIX}/{message_id}", json={"status": "replied", "adminNotes": "sent FAQ"}, headers=admin_headers
    )
    assert updated.json()["message"] == "Message updated successfully"
    assert updated.json()["data"]["message"]["admin_notes"] == "sent FAQ"

    deleted = await client.delete(f"{PREFIX}/{message_id}", headers=admin_headers)
    assert deleted.json() == {"success": True, "message": "Message deleted successfully"}

    missing = await client.get(f"{PREFIX}/{message_id}", headers=admin_headers)
    assert missing.status_code == 404
    bad = await client.get(f"{PREFIX}/not-an-id", headers=admin_headers)
    assert bad.status_code == 400
