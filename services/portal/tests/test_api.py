from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.errors import GasApiError
from app.main import create_app
from app.portal import Portal
from app.services.registry import GrantRegistry

HEADERS = {"x-user-id": "CRN123", "x-business-id": "12345"}


@pytest.fixture
def portal(settings, grant, store, gas, backend):
    return Portal(
        settings=settings,
        grants=GrantRegistry({grant.slug: grant}),
        store=store,
        gas=gas,
        backend=backend,
    )


@pytest.fixture
def client(portal):
    with TestClient(create_app(portal=portal), follow_redirects=False) as c:
        c.headers.update(HEADERS)
        yield c


def start_application(client, answers=None):
    r = client.get("/grant-a/start")
    assert r.status_code == 200
    if answers:
        assert client.post("/grant-a/question", json=answers).status_code == 200
    return r.json()["reference_number"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_unknown_grant_is_not_found(client):
    r = client.get("/no-such-grant/start")
    assert r.status_code == 404
    assert r.json() == {"detail": "Page not found"}


def test_unknown_page_is_not_found(client):
    assert client.get("/grant-a/not-a-page").status_code == 404


def test_grant_root_redirects_to_start_page(client):
    r = client.get("/grant-a")
    assert r.status_code == 303
    assert r.headers["location"] == "/grant-a/start"


def test_first_visit_allocates_a_reference_number(client):
    body = client.get("/grant-a/start").json()

    assert body["application_status"] == "UNSET"
    assert body["answers"] == {}
    assert len(body["reference_number"]) == 11
    assert client.get("/grant-a/question").json()["reference_number"] == body["reference_number"]


def test_posted_answers_are_merged_without_bookkeeping_fields(client):
    start_application(client)

    r = client.post("/grant-a/question", json={"question": "yes", "applicationStatus": "SUBMITTED"})

    assert r.json() == {"ok": True, "saved": 1, "next_path": "/grant-a/summary"}
    page = client.get("/grant-a/question").json()
    assert page["answers"] == {"question": "yes"}
    assert page["application_status"] == "UNSET"


def test_returning_applicant_resumes_at_check_answers(client):
    start_application(client, {"question": "yes"})

    r = client.get("/grant-a/start")

    assert r.status_code == 303
    assert r.headers["location"] == "/grant-a/summary"


def test_answers_posted_to_start_page_are_kept(client):
    start_application(client, {"question": "a"})

    r = client.post("/grant-a/start", json={"startField": "x"})

    assert r.status_code == 200
    assert r.json()["next_path"] == "/grant-a/question"
    assert client.get("/grant-a/question").json()["answers"] == {"question": "a", "startField": "x"}


def test_posting_after_submission_redirects_without_saving(client):
    start_application(client, {"question": "a"})
    client.post("/grant-a/submit")

    r = client.post("/grant-a/question", json={"question": "changed"})

    assert r.status_code == 303
    assert r.headers["location"] == "/grant-a/confirmation"
    assert client.get("/grant-a/confirmation").json()["answers"] == {"question": "a"}


def test_submission_sends_answers_to_gas_and_confirms(client, gas, backend):
    ref = start_application(client, {"question": "yes"})

    r = client.post("/grant-a/submit")

    assert r.status_code == 303
    assert r.headers["location"] == "/grant-a/confirmation"
    grant_code, application = gas.submissions[-1]
    assert grant_code == "grant-a-code"
    assert application["metadata"]["clientRef"] == ref.lower()
    assert application["metadata"]["sbi"] == "12345"
    assert application["answers"] == {"question": "yes"}
    assert backend.submissions[-1]["referenceNumber"] == ref

    page = client.get("/grant-a/confirmation").json()
    assert page["application_status"] == "SUBMITTED"


def test_submitted_applicant_is_kept_on_confirmation(client, gas):
    start_application(client, {"question": "yes"})
    client.post("/grant-a/submit")

    r = client.get("/grant-a/start")

    assert r.status_code == 303
    assert r.headers["location"] == "/grant-a/confirmation"
    assert client.get("/grant-a/confirmation").status_code == 200
    assert gas.status_calls


def test_resubmitting_an_application_gas_holds_redirects_instead(client, gas):
    start_application(client, {"question": "yes"})
    client.post("/grant-a/submit")

    r = client.post("/grant-a/submit")

    assert r.status_code == 303
    assert r.headers["location"] == "/grant-a/confirmation"
    assert len(gas.submissions) == 1


def test_amendments_reopen_the_application_for_editing(client, gas):
    start_application(client, {"question": "yes"})
    client.post("/grant-a/submit")
    gas.status = "AWAITING_AMENDMENTS"

    r = client.get("/grant-a/confirmation")
    assert r.headers["location"] == "/grant-a/summary"

    page = client.get("/grant-a/summary").json()
    assert page["application_status"] == "REOPENED"
    assert page["answers"] == {"question": "yes"}

    # resubmission
    gas.status = "RECEIVED"
    assert client.post("/grant-a/submit").headers["location"] == "/grant-a/confirmation"
    assert len(gas.submissions) == 2


def test_withdrawal_starts_a_fresh_application(client, gas):
    ref = start_application(client, {"question": "yes"})
    client.post("/grant-a/submit")
    gas.status = "APPLICATION_WITHDRAWN"

    r = client.get("/grant-a/confirmation")
    assert r.headers["location"] == "/grant-a/start"

    page = client.get("/grant-a/start").json()
    assert page["application_status"] == "CLEARED"
    assert page["answers"] == {}
    assert page["reference_number"] != ref


def test_withdrawal_seen_on_start_page_gets_a_new_reference(client, gas):
    ref = start_application(client, {"question": "yes"})
    client.post("/grant-a/submit")
    gas.status = "APPLICATION_WITHDRAWN"

    r = client.get("/grant-a/start")

    assert r.status_code == 200
    page = r.json()
    assert page["application_status"] == "CLEARED"
    assert page["reference_number"] is not None
    assert page["reference_number"] != ref
    assert client.get("/grant-a/question").json()["reference_number"] == page["reference_number"]


def test_gas_outage_sends_submitted_applicant_to_fallback_page(client, gas):
    start_application(client, {"question": "yes"})
    client.post("/grant-a/submit")
    gas.error = GasApiError("GAS unavailable", status_code=503)

    r = client.get("/grant-a/start")

    assert r.status_code == 303
    assert r.headers["location"] == "/grant-a/fallback"
    assert client.get("/grant-a/fallback").status_code == 200


def test_failed_submission_shows_error_with_reference(client, gas, backend):
    ref = start_application(client, {"question": "yes"})
    gas.submit_error = GasApiError("GAS unavailable", status_code=503)

    r = client.post("/grant-a/submit")

    assert r.status_code == 502
    assert r.json()["ref_number"] == ref
    assert backend.submissions == []
    assert client.get("/grant-a/question").json()["application_status"] == "UNSET"


def test_submission_without_reference_number_fails(client):
    r = client.post("/grant-a/submit")
    assert r.status_code == 502
    assert r.json()["ref_number"] == "N/A"


def test_grant_without_grant_code_is_a_server_error(settings, grant_without_code, store, gas):
    portal = Portal(
        settings=settings,
        grants=GrantRegistry({"grant-a": grant_without_code}),
        store=store,
        gas=gas,
    )
    client = TestClient(create_app(portal=portal), follow_redirects=False)

    r = client.get("/grant-a/start", headers=HEADERS)

    assert r.status_code == 500
    assert r.json() == {"detail": "Something went wrong"}


def test_business_switch_uses_a_separate_session(client):
    start_application(client, {"question": "yes"})

    other = client.get("/grant-a/question", headers={"x-business-id": "99999"}).json()

    assert other["answers"] == {}
