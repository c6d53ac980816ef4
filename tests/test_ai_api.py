"""
AI endpoints: role gating, ownership, monthly quotas and stored results.
"""
from pymongo.errors import ServerSelectionTimeoutError

from factories import create_job, create_user
from internmatch.services import ai_client
from internmatch.services.ai_client import save_ai_output


def _apply(client, student, job_id):
    response = client.post(f"/api/job/{job_id}/apply", json={}, headers=student["headers"])
    return response.json()["data"]["id"]


def _usage_of(client, user, feature):
    rows = client.get("/api/user/usage", headers=user["headers"]).json()["data"]["usage"]
    return next(row for row in rows if row["feature"] == feature)


class TestStudentFeatures:
    def test_ats_quota_on_free_plan(self, client, ai):
        student = create_user()

        first = client.post("/api/ai/ats", json={"resume_text": "Python developer"}, headers=student["headers"])
        assert first.status_code == 200
        body = first.json()["data"]
        assert body["analysis"]["ats_score"] == 72
        assert body["usage"] == {"current": 1, "limit": 1}

        second = client.post("/api/ai/ats", json={"resume_text": "Python developer"}, headers=student["headers"])
        assert second.status_code == 403
        assert "limit" in second.json()["error"].lower()
        assert ai.calls == ["ats"]

    def test_missing_resume_does_not_consume_quota(self, client, ai):
        student = create_user()
        response = client.post("/api/ai/ats", json={}, headers=student["headers"])
        assert response.status_code == 400
        assert _usage_of(client, student, "ats_analyze")["current"] == 0
        assert ai.calls == []

    def test_role_suggestions(self, client):
        student = create_user()
        response = client.post("/api/ai/role-suggestions", json={}, headers=student["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["suggestions"][0]["role"] == "Data Analyst"

    def test_resume_needs_sections(self, client):
        student = create_user()
        assert client.post("/api/ai/resume", json={"sections": {}}, headers=student["headers"]).status_code == 400

        built = client.post("/api/ai/resume", json={"title": "CV", "sections": {"summary": "x"}}, headers=student["headers"])
        assert built.json()["data"]["resume"]["title"] == "CV"

    def test_interview_prep_only_for_own_application(self, client):
        company = create_user(role="company")
        student = create_user()
        other = create_user(email="other@example.com")
        application_id = _apply(client, student, create_job(company["company_id"]))

        mine = client.post(
            "/api/ai/student-interview-prep",
            json={"application_id": application_id, "type": "tips"},
            headers=student["headers"],
        )
        assert mine.status_code == 200
        assert mine.json()["data"]["type"] == "tips"

        theirs = client.post(
            "/api/ai/student-interview-prep",
            json={"application_id": application_id, "type": "tips"},
            headers=other["headers"],
        )
        assert theirs.status_code == 404

    def test_company_features_are_closed_to_students(self, client):
        student = create_user()
        response = client.post("/api/ai/review", json={"application_id": "x"}, headers=student["headers"])
        assert response.status_code == 403


class TestCompanyFeatures:
    def test_review_counts_against_quota(self, client, ai):
        company = create_user(role="company")
        student = create_user()
        application_id = _apply(client, student, create_job(company["company_id"]))

        response = client.post("/api/ai/review", json={"application_id": application_id}, headers=company["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["usage"] == {"current": 1, "limit": 5}
        assert ai.calls == ["review"]

    def test_other_company_application_is_not_found(self, client, ai):
        owner = create_user(role="company")
        other = create_user(role="company", email="other@corp.example.com")
        student = create_user()
        application_id = _apply(client, student, create_job(owner["company_id"]))

        for path in ("/api/ai/review", "/api/ai/interview", "/api/ai/alternative-roles"):
            response = client.post(path, json={"application_id": application_id}, headers=other["headers"])
            assert response.status_code == 404
        assert ai.calls == []
        assert _usage_of(client, other, "job_prediction")["current"] == 0

    def test_interview_question_count(self, client):
        company = create_user(role="company")
        student = create_user()
        application_id = _apply(client, student, create_job(company["company_id"]))

        response = client.post(
            "/api/ai/interview", json={"application_id": application_id, "count": 3}, headers=company["headers"],
        )
        assert len(response.json()["data"]["questions"]) == 3

    def test_alternative_roles_need_open_jobs(self, client):
        company = create_user(role="company")
        student = create_user()
        job_id = create_job(company["company_id"])
        application_id = _apply(client, student, job_id)
        client.put(f"/api/job/{job_id}", json={"status": "closed"}, headers=company["headers"])

        response = client.post(
            "/api/ai/alternative-roles", json={"application_id": application_id}, headers=company["headers"],
        )
        assert response.status_code == 400
        assert _usage_of(client, company, "alternative_role")["current"] == 0


class TestStoredResults:
    def test_student_sees_own_ats_history(self, client):
        student = create_user()
        other = create_user(email="other@example.com")
        client.post("/api/ai/ats", json={"resume_text": "Python developer"}, headers=student["headers"])

        data = client.get("/api/ai/ats", headers=student["headers"]).json()["data"]
        assert data["pagination"] == {"limit": 50, "offset": 0, "count": 1}
        item = data["items"][0]
        assert item["result"]["ats_score"] == 72
        assert item["id"] and item["created_at"]
        assert "_id" not in item

        assert client.get("/api/ai/ats", headers=other["headers"]).json()["data"]["items"] == []
        filtered = client.get("/api/ai/ats?resume_id=r-1", headers=student["headers"]).json()["data"]
        assert filtered["items"] == []

    def test_history_limit_is_validated(self, client):
        student = create_user()
        assert client.get("/api/ai/role-suggestions?limit=500", headers=student["headers"]).status_code == 400

    def test_role_suggestion_history(self, client):
        student = create_user()
        client.post("/api/ai/role-suggestions", json={}, headers=student["headers"])
        items = client.get("/api/ai/role-suggestions", headers=student["headers"]).json()["data"]["items"]
        assert items[0]["result"]["summary"] == "fit"

    def test_interview_prep_history_and_delete(self, client):
        student = create_user()
        other = create_user(email="other@example.com")
        for prep_type in ("questions", "tips"):
            save_ai_output("interview_prep", student["user_id"], {"application_id": "a-1", "type": prep_type, "result": {}})
        save_ai_output("interview_prep", other["user_id"], {"application_id": "a-1", "type": "tips", "result": {}})

        tips = client.get("/api/ai/student-interview-prep?application_id=a-1&type=tips", headers=student["headers"])
        assert [i["type"] for i in tips.json()["data"]["items"]] == ["tips"]

        removed = client.delete("/api/ai/student-interview-prep/a-1?type=tips", headers=student["headers"])
        assert removed.json()["data"] == {"deleted": 1}
        remaining = client.get("/api/ai/student-interview-prep", headers=student["headers"]).json()["data"]["items"]
        assert [i["type"] for i in remaining] == ["questions"]

        client.delete("/api/ai/student-interview-prep/a-1", headers=student["headers"])
        assert client.get("/api/ai/student-interview-prep", headers=student["headers"]).json()["data"]["items"] == []
        assert len(client.get("/api/ai/student-interview-prep", headers=other["headers"]).json()["data"]["items"]) == 1

    def test_company_history_is_per_application(self, client):
        company = create_user(role="company")
        other = create_user(role="company", email="other@corp.example.com")
        student = create_user()
        application_id = _apply(client, student, create_job(company["company_id"]))
        client.post("/api/ai/review", json={"application_id": application_id}, headers=company["headers"])

        reviews = client.get(f"/api/ai/review?application_id={application_id}", headers=company["headers"])
        assert reviews.json()["data"]["items"][0]["result"]["match_score"] == 80

        assert client.get("/api/ai/review", headers=company["headers"]).status_code == 400
        assert client.get(f"/api/ai/review?application_id={application_id}", headers=other["headers"]).status_code == 404
        assert client.get("/api/ai/ats", headers=company["headers"]).status_code == 403

    def test_company_clears_application_results(self, client):
        company = create_user(role="company")
        student = create_user()
        first = _apply(client, student, create_job(company["company_id"]))
        second = _apply(client, student, create_job(company["company_id"], title="Data Intern"))
        for key in ("interview_questions", "application_reviews", "alternative_roles"):
            for application_id in (first, second):
                save_ai_output(key, company["user_id"], {"application_id": application_id, "result": {}})

        response = client.delete(f"/api/ai/interview/{first}", headers=company["headers"])
        assert response.json()["data"]["deleted"] == {
            "interview_questions": 1, "application_reviews": 1, "alternative_roles": 1,
        }
        assert client.get(f"/api/ai/interview?application_id={first}", headers=company["headers"]).json()["data"]["items"] == []
        kept = client.get(f"/api/ai/alternative-roles?application_id={second}", headers=company["headers"])
        assert len(kept.json()["data"]["items"]) == 1

    def test_clearing_another_company_application_is_not_found(self, client):
        owner = create_user(role="company")
        other = create_user(role="company", email="other@corp.example.com")
        student = create_user()
        application_id = _apply(client, student, create_job(owner["company_id"]))
        assert client.delete(f"/api/ai/interview/{application_id}", headers=other["headers"]).status_code == 404

    def test_store_outage_is_upstream_error(self, client, monkeypatch):
        def unreachable(key):
            raise ServerSelectionTimeoutError("no servers")

        monkeypatch.setattr(ai_client, "get_collection", unreachable)
        student = create_user()
        response = client.get("/api/ai/ats", headers=student["headers"])
        assert response.status_code == 500
        assert response.json()["success"] is False
