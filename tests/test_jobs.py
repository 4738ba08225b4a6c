import json
from unittest.mock import patch

from fastapi import status
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import logic
import models
from conftest import auth_headers, create_test_job, create_test_user


# --- Listing & pagination --- #
def test_listing_seeds_empty_table_and_paginates(test_client, db_session: Session):
    response = test_client.get("/api/jobs", params={"page": 2, "limit": 10})

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert len(body["jobs"]) == 10
    assert body["pagination"] == {"total": 25, "page": 2, "limit": 10, "pages": 3}
    assert db_session.query(models.Job).count() == 25


def test_listing_last_page_and_defaults(test_client):
    last = test_client.get("/api/jobs", params={"page": 3, "limit": 10}).json()
    assert len(last["jobs"]) == 5

    default = test_client.get("/api/jobs").json()
    assert default["pagination"]["page"] == 1
    assert default["pagination"]["limit"] == 10


def test_listing_is_newest_first_with_camel_case_fields(test_client, db_session: Session):
    body = test_client.get("/api/jobs", params={"limit": 2}).json()

    first = body["jobs"][0]
    assert first["title"] == "Senior Backend Engineer"
    assert first["salary"] == {"min": 140000, "max": 180000, "currency": "USD"}
    assert "postedAt" in first
    assert first["applicationUrl"] == "https://careers.lumenledger.example/backend"


def test_search_is_case_insensitive_across_fields(test_client, db_session: Session):
    create_test_job(db_session, title="Python Developer", company="Snake Inc")
    create_test_job(db_session, title="Designer", company="PYTHONISTA Studio", category="Design")
    create_test_job(db_session, title="Accountant", company="Ledger", description="Numbers", category="Finance")

    body = test_client.get("/api/jobs", params={"search": "python"}).json()

    assert {job["title"] for job in body["jobs"]} == {"Python Developer", "Designer"}
    assert body["pagination"]["total"] == 2


def test_search_treats_wildcards_literally(test_client, db_session: Session):
    create_test_job(db_session, title="100% Remote Engineer")
    create_test_job(db_session, title="Office Engineer")

    body = test_client.get("/api/jobs", params={"search": "100%"}).json()

    assert [job["title"] for job in body["jobs"]] == ["100% Remote Engineer"]


def test_exact_and_range_filters(test_client, db_session: Session):
    create_test_job(db_session, title="Remote Contract", type=models.JobType.CONTRACT, remote=True, salary_min=50)
    create_test_job(db_session, title="Onsite Full Time", remote=False, location="Berlin, Germany", salary_min=90000)
    create_test_job(db_session, title="Remote Full Time", remote=True, salary_min=120000, category="Data")
    create_test_job(db_session, title="Closed", active=False)

    def titles(**params):
        return {job["title"] for job in test_client.get("/api/jobs", params=params).json()["jobs"]}

    assert titles(type="CONTRACT") == {"Remote Contract"}
    assert titles(remote="false") == {"Onsite Full Time"}
    assert titles(location="berlin") == {"Onsite Full Time"}
    assert titles(category="Data") == {"Remote Full Time"}
    assert titles(minSalary=100000) == {"Remote Full Time"}
    assert "Closed" not in titles()


def test_invalid_job_type_is_rejected(test_client, db_session: Session):
    create_test_job(db_session)
    response = test_client.get("/api/jobs", params={"type": "SOMETIMES"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_out_of_range_paging_is_clamped(test_client, db_session: Session):
    create_test_job(db_session)
    body = test_client.get("/api/jobs", params={"page": 0, "limit": 1000}).json()
    assert body["pagination"]["page"] == 1
    assert body["pagination"]["limit"] == logic.MAX_PAGE_SIZE


# --- Single job & categories --- #
def test_get_job_and_missing_job(test_client, db_session: Session):
    job = create_test_job(db_session, title="Findable")

    found = test_client.get(f"/api/jobs/{job.id}")
    missing = test_client.get(f"/api/jobs/{job.id + 999}")

    assert found.status_code == status.HTTP_200_OK
    assert found.json()["title"] == "Findable"
    assert missing.status_code == status.HTTP_404_NOT_FOUND
    assert missing.json() == {"detail": "Job not found"}


def test_categories_seed_when_empty(test_client):
    response = test_client.get("/api/jobs/categories")

    assert response.status_code == status.HTTP_200_OK
    categories = response.json()
    assert categories == sorted(set(categories))
    assert {"Engineering", "Design", "Blockchain", "Data"} <= set(categories)


def test_categories_fall_back_to_seed_file_when_store_fails(test_client):
    failure = OperationalError("SELECT", {}, Exception("database is locked"))
    with patch("logic.crud.get_categories", side_effect=failure):
        response = test_client.get("/api/jobs/categories")

    assert response.status_code == status.HTTP_200_OK
    assert "Engineering" in response.json()


# --- Seeding --- #
def test_seed_skips_non_empty_table(db_session: Session, settings):
    create_test_job(db_session)
    assert logic.seed_jobs(db_session, settings.seed_data_path) == 0
    assert db_session.query(models.Job).count() == 1


def test_seed_retries_one_by_one_after_bulk_failure(db_session: Session, tmp_path):
    records = [
        {"title": "Good One", "company": "A", "description": "d", "location": "x", "category": "Engineering"},
        {"company": "Missing title", "description": "d", "location": "x", "category": "Engineering"},
        {"title": "Good Two", "company": "B", "description": "d", "location": "y", "category": "Design",
         "type": "PART_TIME", "salary": {"min": 10, "max": 20, "currency": "EUR"}},
    ]
    seed_file = tmp_path / "jobs.json"
    seed_file.write_text(json.dumps(records))

    inserted = logic.seed_jobs(db_session, seed_file)

    assert inserted == 2
    titles = {job.title for job in db_session.query(models.Job).all()}
    assert titles == {"Good One", "Good Two"}
    second = db_session.query(models.Job).filter_by(title="Good Two").one()
    assert second.salary == {"min": 10, "max": 20, "currency": "EUR"}


def test_seed_with_missing_file_inserts_nothing(db_session: Session, tmp_path):
    assert logic.seed_jobs(db_session, tmp_path / "absent.json") == 0


# --- Interest / discard workflow --- #
def test_discard_then_interest_keeps_one_row(test_client, db_session: Session, settings):
    user = create_test_user(db_session)
    job = create_test_job(db_session)
    headers = auth_headers(user, settings)

    discarded = test_client.post(f"/api/jobs/{job.id}/status", json={"status": "DISCARDED"}, headers=headers)
    interested = test_client.post(f"/api/jobs/{job.id}/status", json={"status": "INTERESTED"}, headers=headers)

    assert discarded.status_code == status.HTTP_200_OK
    assert interested.json() == {"status": "success", "jobStatus": "INTERESTED"}
    rows = db_session.query(models.UserJob).filter_by(user_id=user.id, job_id=job.id).all()
    assert len(rows) == 1
    assert rows[0].status == models.UserJobStatus.INTERESTED


def test_status_update_validation(test_client, db_session: Session, settings):
    user = create_test_user(db_session)
    job = create_test_job(db_session)
    headers = auth_headers(user, settings)

    applied = test_client.post(f"/api/jobs/{job.id}/status", json={"status": "APPLIED"}, headers=headers)
    unknown_job = test_client.post(f"/api/jobs/{job.id + 1}/status", json={"status": "INTERESTED"}, headers=headers)

    assert applied.status_code == status.HTTP_400_BAD_REQUEST
    assert applied.json() == {"detail": "Invalid status"}
    assert unknown_job.status_code == status.HTTP_404_NOT_FOUND


def test_user_jobs_listing_with_status_filter(test_client, db_session: Session, settings):
    user = create_test_user(db_session)
    other = create_test_user(db_session, nickname="other")
    liked = create_test_job(db_session, title="Liked")
    skipped = create_test_job(db_session, title="Skipped")
    headers = auth_headers(user, settings)

    test_client.post(f"/api/jobs/{liked.id}/status", json={"status": "INTERESTED"}, headers=headers)
    test_client.post(f"/api/jobs/{skipped.id}/status", json={"status": "DISCARDED"}, headers=headers)
    test_client.post(
        f"/api/jobs/{liked.id}/status", json={"status": "DISCARDED"}, headers=auth_headers(other, settings)
    )

    everything = test_client.get("/api/jobs/user", headers=headers).json()
    interested = test_client.get("/api/jobs/user", params={"status": "INTERESTED"}, headers=headers).json()
    invalid = test_client.get("/api/jobs/user", params={"status": "MAYBE"}, headers=headers)

    assert len(everything) == 2
    assert [entry["job"]["title"] for entry in interested] == ["Liked"]
    assert interested[0]["status"] == "INTERESTED"
    assert invalid.status_code == status.HTTP_400_BAD_REQUEST
