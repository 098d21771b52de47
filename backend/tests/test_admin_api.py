import json
from datetime import timedelta

import pytest

from competition_portal.core.config import settings
from competition_portal.core.database import utcnow
from competition_portal.models import Competition, Submission, SubmissionMessage, SubmissionStatus, VerificationToken
from competition_portal.services.token_service import token_service

CLEANUP_HEADERS = {"Authorization": "Bearer cleanup-secret"}
SCORES = {
    "creativity_score": 8,
    "technical_score": 7.5,
    "ai_tool_usage_score": 9,
    "adherence_score": 6,
    "impact_score": 8,
}


@pytest.fixture
def submission(db, participant, weekly_competition):
    record = Submission(
        user_id=participant.id,
        competition_id=weekly_competition.id,
        interval=1,
        file_url="https://drive.google.com/file/d/xyz789/view",
        title="Dreamscape",
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def test_admin_routes_require_admin(client, participant, auth_headers):
    assert client.get("/api/admin/settings").status_code == 401
    assert client.get("/api/admin/settings", headers=auth_headers(participant)).status_code == 403


def test_settings_round_trip_with_versions(client, admin_user, auth_headers):
    headers = auth_headers(admin_user)
    current = client.get("/api/admin/settings", headers=headers).json()
    assert current == {
        "current_interval": 1,
        "is_submissions_open": True,
        "max_submissions_per_interval": 3,
        "version": 1,
    }

    updated = client.post("/api/admin/settings", headers=headers, json={
        "is_submissions_open": False, "expected_version": 1})
    assert updated.status_code == 200
    assert updated.json()["is_submissions_open"] is False
    assert updated.json()["max_submissions_per_interval"] == 3
    assert updated.json()["version"] == 2

    # Second admin still holding version 1
    stale = client.post("/api/admin/settings", headers=headers, json={
        "max_submissions_per_interval": 5, "expected_version": 1})
    assert stale.status_code == 409

    advanced = client.post("/api/admin/settings/advance-interval", headers=headers)
    assert advanced.status_code == 200
    assert advanced.json()["current_interval"] == 2

    invalid = client.post("/api/admin/settings", headers=headers, json={"current_interval": 0})
    assert invalid.status_code == 400


def test_score_submission(client, admin_user, auth_headers, submission):
    response = client.post(
        f"/api/admin/submissions/{submission.id}/score",
        headers=auth_headers(admin_user),
        json={**SCORES, "judge_comments": "Bold palette"},
    )

    assert response.status_code == 200
    body = response.json()
    # (8 + 7.5 + 9 + 6 + 8) / 5 = 7.7
    assert body["overall_score"] == 7.7
    assert body["status"] == "EVALUATED"
    assert body["evaluated_by"] == admin_user.name
    assert body["user"]["email"] == "participant@example.com"


def test_score_out_of_range_is_rejected(client, db, admin_user, auth_headers, submission):
    response = client.post(
        f"/api/admin/submissions/{submission.id}/score",
        headers=auth_headers(admin_user),
        json={**SCORES, "impact_score": 10.5},
    )

    assert response.status_code == 400
    db.refresh(submission)
    assert submission.overall_score is None


@pytest.mark.parametrize("bad", [float("nan"), float("inf")])
def test_score_non_finite_is_rejected(client, db, admin_user, auth_headers, submission, bad):
    # Serialised by hand since the client refuses to emit NaN/Infinity
    response = client.post(
        f"/api/admin/submissions/{submission.id}/score",
        headers={**auth_headers(admin_user), "Content-Type": "application/json"},
        content=json.dumps({**SCORES, "creativity_score": bad}),
    )

    assert response.status_code == 400
    db.refresh(submission)
    assert submission.overall_score is None
    assert submission.status == SubmissionStatus.PENDING


def test_score_unknown_submission(client, admin_user, auth_headers):
    response = client.post("/api/admin/submissions/404/score", headers=auth_headers(admin_user), json=SCORES)
    assert response.status_code == 404


def test_patch_submission(client, admin_user, auth_headers, submission):
    headers = auth_headers(admin_user)
    url = f"/api/admin/submissions/{submission.id}"

    review = client.patch(url, headers=headers, json={"status": "UNDER_REVIEW"})
    assert review.status_code == 200
    assert review.json()["status"] == "UNDER_REVIEW"
    assert review.json()["title"] == "Dreamscape"

    flagged = client.patch(url, headers=headers, json={
        "is_disqualified": True, "disqualification_reason": "Plagiarised"})
    assert flagged.json()["status"] == "UNDER_REVIEW"
    assert flagged.json()["is_disqualified"] is True

    assert client.patch(url, headers=headers, json={}).status_code == 400
    assert client.patch(url, headers=headers, json={"status": None}).status_code == 400
    assert client.patch(url, headers=headers, json={"file_url": "ftp://nowhere"}).status_code == 400


def test_list_submissions_with_filters(client, db, admin_user, auth_headers, submission, weekly_competition):
    db.add(Submission(
        user_id=admin_user.id,
        competition_id=weekly_competition.id,
        interval=2,
        file_url="https://drive.google.com/drive/folders/folder01",
        status=SubmissionStatus.WINNER,
    ))
    db.commit()
    headers = auth_headers(admin_user)

    everything = client.get("/api/admin/submissions", headers=headers).json()
    assert everything["total"] == 2

    winners = client.get("/api/admin/submissions", headers=headers, params={"status": "WINNER"}).json()
    assert winners["total"] == 1
    assert winners["items"][0]["interval"] == 2

    first_interval = client.get("/api/admin/submissions", headers=headers, params={"interval": 1}).json()
    assert [item["id"] for item in first_interval["items"]] == [submission.id]


def test_soft_and_hard_delete(client, db, admin_user, auth_headers, submission):
    headers = auth_headers(admin_user)
    url = f"/api/admin/submissions/{submission.id}"

    soft = client.delete(url, headers=headers)
    assert soft.status_code == 200
    assert soft.json()["submission"]["is_disqualified"] is True
    assert soft.json()["submission"]["status"] == "REJECTED"
    assert db.query(Submission).count() == 1

    hard = client.delete(url, headers=headers, params={"force_delete": "true"})
    assert hard.status_code == 200
    assert db.query(Submission).count() == 0
    assert client.delete(url, headers=headers).status_code == 404


def test_activate_and_deactivate_users(client, db, admin_user, participant, auth_headers):
    headers = auth_headers(admin_user)

    deactivated = client.post(f"/api/admin/users/{participant.id}/deactivate", headers=headers)
    assert deactivated.json()["is_active"] is False
    # Inactive accounts lose API access
    assert client.get("/api/auth/me", headers=auth_headers(participant)).status_code == 403

    activated = client.post(f"/api/admin/users/{participant.id}/activate", headers=headers)
    assert activated.json()["is_active"] is True

    assert client.post(f"/api/admin/users/{admin_user.id}/deactivate", headers=headers).status_code == 403
    assert client.post("/api/admin/users/999/activate", headers=headers).status_code == 404


def test_bulk_verify_email(client, db, admin_user, make_user, auth_headers):
    first = make_user(verified=False, active=False)
    second = make_user(verified=False, active=False)

    response = client.post(
        "/api/admin/users/bulk-verify-email", headers=auth_headers(admin_user), json={"user_ids": [first.id]})
    assert response.json()["updated"] == 1

    db.expire_all()
    assert first.is_email_verified is True and first.is_active is True
    assert second.is_email_verified is False

    response = client.post("/api/admin/users/bulk-verify-email", headers=auth_headers(admin_user), json={})
    assert response.json()["updated"] == 1


def test_list_users(client, admin_user, participant, auth_headers):
    body = client.get("/api/admin/users", headers=auth_headers(admin_user)).json()
    assert body["total"] == 2
    assert {user["email"] for user in body["items"]} == {admin_user.email, participant.email}
    assert all("hashed_password" not in user for user in body["items"])


def test_list_users_search_and_filters(client, db, admin_user, participant, make_user, auth_headers):
    pending = make_user(email="pending@example.com", name="Ravi Pending", verified=False, active=False)
    pending.institution = "Delhi Design School"
    db.commit()
    headers = auth_headers(admin_user)

    def emails(**params):
        body = client.get("/api/admin/users", headers=headers, params=params).json()
        assert body["total"] == len(body["items"])
        return {user["email"] for user in body["items"]}

    assert emails(search="ravi") == {"pending@example.com"}
    assert emails(search="PARTICIPANT@") == {participant.email}
    assert emails(is_active="false") == {"pending@example.com"}
    assert emails(is_email_verified="true") == {admin_user.email, participant.email}
    assert emails(institution="design") == {"pending@example.com"}
    assert emails(search="nobody") == set()

    page = client.get("/api/admin/users", headers=headers, params={"limit": 1}).json()
    assert page["total"] == 3
    assert len(page["items"]) == 1


def test_create_competition(client, db, admin_user, auth_headers):
    headers = auth_headers(admin_user)
    payload = {"slug": "poster-week", "title": "Poster Week", "is_weekly": False}

    created = client.post("/api/admin/competitions", headers=headers, json=payload)
    assert created.status_code == 201
    assert created.json()["is_weekly"] is False
    assert db.query(Competition).filter(Competition.slug == "poster-week").count() == 1

    assert client.post("/api/admin/competitions", headers=headers, json=payload).status_code == 400


def test_update_competition(client, db, admin_user, auth_headers, weekly_competition, open_competition):
    headers = auth_headers(admin_user)
    url = f"/api/admin/competitions/{weekly_competition.id}"

    response = client.put(url, headers=headers, json={"title": "AI Art Weekly", "is_active": False})
    assert response.status_code == 200
    assert response.json()["title"] == "AI Art Weekly"
    assert response.json()["slug"] == "ai-art"
    db.refresh(weekly_competition)
    assert weekly_competition.is_active is False

    taken = client.put(url, headers=headers, json={"slug": open_competition.slug})
    assert taken.status_code == 400
    assert taken.json()["error"] == "A competition with this slug already exists"

    # Keeping its own slug is not a conflict
    assert client.put(url, headers=headers, json={"slug": "ai-art"}).status_code == 200
    assert client.put(url, headers=headers, json={}).status_code == 400
    assert client.put(url, headers=headers, json={"title": None}).status_code == 400
    assert client.put("/api/admin/competitions/999", headers=headers, json={"title": "X"}).status_code == 404


def test_delete_competition(client, db, admin_user, auth_headers, submission, weekly_competition, open_competition):
    headers = auth_headers(admin_user)
    finale_id = open_competition.id

    blocked = client.delete(f"/api/admin/competitions/{weekly_competition.id}", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["success"] is False

    deleted = client.delete(f"/api/admin/competitions/{finale_id}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["id"] == finale_id
    db.expire_all()
    assert db.query(Competition).filter(Competition.slug == "grand-finale").count() == 0
    assert db.query(Competition).filter(Competition.slug == "ai-art").count() == 1

    assert client.delete(f"/api/admin/competitions/{finale_id}", headers=headers).status_code == 404


def test_message_inbox(client, db, admin_user, participant, make_user, auth_headers, weekly_competition, submission):
    other = make_user(email="other@example.com", name="Other Artist")
    quiet = Submission(user_id=other.id, competition_id=weekly_competition.id, interval=1,
                       file_url="https://drive.google.com/file/d/quiet/view")
    answered_only = Submission(user_id=other.id, competition_id=weekly_competition.id, interval=1,
                               file_url="https://drive.google.com/file/d/admin-only/view")
    db.add_all([quiet, answered_only])
    db.commit()

    start = utcnow()
    db.add_all([
        SubmissionMessage(submission_id=submission.id, author_id=participant.id,
                          content="Is the link working?", created_at=start),
        SubmissionMessage(submission_id=submission.id, author_id=participant.id,
                          content="Updated the file", created_at=start + timedelta(minutes=5)),
        SubmissionMessage(submission_id=submission.id, author_id=admin_user.id, is_from_admin=True,
                          content="Thanks, received", created_at=start + timedelta(minutes=10)),
        SubmissionMessage(submission_id=quiet.id, author_id=other.id,
                          content="Hello judges", created_at=start + timedelta(minutes=1)),
        SubmissionMessage(submission_id=answered_only.id, author_id=admin_user.id, is_from_admin=True,
                          content="Please fix sharing", created_at=start + timedelta(minutes=20)),
    ])
    db.commit()

    response = client.get("/api/admin/messages", headers=auth_headers(admin_user))
    assert response.status_code == 200
    inbox = response.json()

    assert [entry["id"] for entry in inbox] == [submission.id, quiet.id]
    latest = inbox[0]["latest_message"]
    assert latest["content"] == "Updated the file"
    assert latest["author"]["email"] == participant.email
    assert inbox[0]["user"]["name"] == "Participant"
    assert inbox[1]["user"]["email"] == "other@example.com"

    limited = client.get("/api/admin/messages", headers=auth_headers(admin_user), params={"limit": 1}).json()
    assert [entry["id"] for entry in limited] == [submission.id]

    assert client.get("/api/admin/messages", headers=auth_headers(participant)).status_code == 403


def test_stats(client, admin_user, participant, auth_headers, submission):
    client.post(f"/api/admin/submissions/{submission.id}/score", headers=auth_headers(admin_user), json=SCORES)

    stats = client.get("/api/admin/stats", headers=auth_headers(admin_user)).json()

    assert stats["total_users"] == 2
    assert stats["total_submissions"] == 1
    assert stats["submissions_by_status"]["EVALUATED"] == 1
    assert stats["submissions_by_status"]["PENDING"] == 0
    assert stats["current_interval"] == 1
    assert stats["submissions_this_interval"] == 1
    assert stats["average_score"] == 7.7


def test_scheduler_status_endpoint(client, admin_user, auth_headers):
    status = client.get("/api/admin/scheduler", headers=auth_headers(admin_user)).json()
    assert status == {"running": False, "next_run_time": None}


def test_email_campaign(client, admin_user, participant, make_user, auth_headers, sent_emails):
    make_user(email="waiting@example.com", verified=False, active=False)
    headers = auth_headers(admin_user)

    response = client.post("/api/admin/emails/campaign", headers=headers, json={
        "subject": "Week 2 is live", "html_body": "<p>New theme!</p>"})
    assert response.status_code == 202
    assert response.json()["recipients"] == 2
    assert {message.to_email for message in sent_emails} == {admin_user.email, participant.email}

    sent_emails.clear()
    client.post("/api/admin/emails/campaign", headers=headers, json={
        "subject": "Verify your account", "html_body": "<p>Last chance</p>", "only_unverified": True})
    assert [message.to_email for message in sent_emails] == ["waiting@example.com"]


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "cleanup-secret"}])
def test_cleanup_tokens_requires_shared_secret(client, headers):
    response = client.post("/api/admin/cleanup-tokens", params={"action": "stats"}, headers=headers)
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Unauthorized: Invalid or missing admin token"
    assert body["message"] == "Unauthorized"


def test_cleanup_tokens_disabled_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_CLEANUP_TOKEN", "")

    response = client.post("/api/admin/cleanup-tokens", params={"action": "stats"}, headers={"Authorization": "Bearer "})
    assert response.status_code == 401


def test_cleanup_tokens_rejects_unknown_action(client):
    response = client.post("/api/admin/cleanup-tokens", params={"action": "purge"}, headers=CLEANUP_HEADERS)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid action. Use: expired, used, full, or stats"

    assert client.post("/api/admin/cleanup-tokens", headers=CLEANUP_HEADERS).status_code == 400


def test_cleanup_tokens_actions(client, db, participant):
    token = token_service.create_verification_token(db, participant.id)
    record = db.query(VerificationToken).filter(VerificationToken.token == token).one()
    record.expires_at = utcnow() - timedelta(hours=1)
    db.commit()

    stats = client.get("/api/admin/cleanup-tokens", params={"action": "stats"}, headers=CLEANUP_HEADERS)
    assert stats.status_code == 200
    assert stats.json()["data"]["verification_tokens"]["expired"] == 1

    expired = client.post("/api/admin/cleanup-tokens", params={"action": "expired"}, headers=CLEANUP_HEADERS)
    assert expired.json()["success"] is True
    assert expired.json()["data"]["total_deleted"] == 1

    full = client.post("/api/admin/cleanup-tokens", params={"action": "full"}, headers=CLEANUP_HEADERS)
    assert full.json()["data"]["grand_total"] == 0

    used = client.post("/api/admin/cleanup-tokens", params={"action": "used"}, headers=CLEANUP_HEADERS)
    assert used.json()["message"] == "Old used tokens cleaned up successfully"
