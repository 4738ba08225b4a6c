from unittest.mock import AsyncMock, patch

from fastapi import status
from sqlalchemy.orm import Session

import llm_interaction
import logic
import models
from conftest import auth_headers, create_test_job, create_test_user


def open_chat(test_client, headers, job_id=None) -> dict:
    body = {"jobId": job_id} if job_id else {}
    pending = test_client.post("/api/chat/create", json=body, headers=headers).json()
    assert pending["status"] == "pending"
    payload = {"transactionId": pending["transactionId"]}
    response = test_client.post("/api/chat/complete", json=payload, headers=headers)
    assert response.status_code == status.HTTP_200_OK
    return response.json()


def test_completed_chat_opens_with_greeting(test_client, db_session: Session, settings):
    settings.require_verified_payment = False
    user = create_test_user(db_session)
    job = create_test_job(db_session)

    chat = open_chat(test_client, auth_headers(user, settings), job_id=job.id)

    assert chat["status"] == "success"
    assert [m["role"] for m in chat["messages"]] == ["AI"]
    assert chat["messages"][0]["content"] == logic.JOB_CHAT_GREETING
    stored = db_session.query(models.Chat).one()
    assert stored.job_id == job.id
    assert stored.transaction.chat_id == stored.id


def test_general_chat_greeting(test_client, db_session: Session, settings):
    settings.require_verified_payment = False
    user = create_test_user(db_session)

    chat = open_chat(test_client, auth_headers(user, settings))

    assert chat["messages"][0]["content"] == logic.GENERAL_CHAT_GREETING


def test_chat_completion_needs_payment_and_is_single_use(test_client, db_session: Session, settings):
    user = create_test_user(db_session)
    headers = auth_headers(user, settings)
    pending = test_client.post("/api/chat/create", json={}, headers=headers).json()
    payload = {"transactionId": pending["transactionId"]}

    unpaid = test_client.post("/api/chat/complete", json=payload, headers=headers)
    test_client.post(
        "/api/payments/callback",
        json={"transaction_id": "tx", "reference": pending["reference"], "status": "success"},
    )
    paid = test_client.post("/api/chat/complete", json=payload, headers=headers)
    again = test_client.post("/api/chat/complete", json=payload, headers=headers)

    assert unpaid.status_code == status.HTTP_402_PAYMENT_REQUIRED
    assert paid.status_code == status.HTTP_200_OK
    assert again.status_code == status.HTTP_409_CONFLICT
    assert db_session.query(models.Chat).count() == 1


def test_message_gets_ai_reply(test_client, db_session: Session, settings):
    settings.require_verified_payment = False
    user = create_test_user(db_session)
    job = create_test_job(db_session, title="Rust Engineer")
    headers = auth_headers(user, settings)
    chat = open_chat(test_client, headers, job_id=job.id)

    with patch(
        "logic.llm_interaction.call_llm_for_chat",
        new_callable=AsyncMock,
        return_value="Highlight your systems experience.",
    ) as mock_llm:
        response = test_client.post(
            "/api/chat/message",
            json={"chatId": chat["chatId"], "message": "How should I apply?"},
            headers=headers,
        )

    assert response.status_code == status.HTTP_200_OK
    messages = response.json()["messages"]
    assert [(m["role"], m["content"]) for m in messages[1:]] == [
        ("USER", "How should I apply?"),
        ("AI", "Highlight your systems experience."),
    ]
    conversation, context = mock_llm.await_args.args
    assert conversation == [
        {"role": "assistant", "content": logic.JOB_CHAT_GREETING},
        {"role": "user", "content": "How should I apply?"},
    ]
    assert "Title: Rust Engineer" in context


def test_provider_failure_appends_fallback_reply(test_client, db_session: Session, settings):
    settings.require_verified_payment = False
    user = create_test_user(db_session)
    headers = auth_headers(user, settings)
    chat = open_chat(test_client, headers)

    with patch(
        "logic.llm_interaction.call_llm_for_chat",
        new_callable=AsyncMock,
        side_effect=RuntimeError("provider down"),
    ):
        response = test_client.post(
            "/api/chat/message",
            json={"chatId": chat["chatId"], "message": "Any remote jobs?"},
            headers=headers,
        )

    assert response.status_code == status.HTTP_200_OK
    last = response.json()["messages"][-1]
    assert last["role"] == "AI"
    assert last["content"] == llm_interaction.FALLBACK_REPLY
    assert db_session.query(models.ChatMessage).count() == 3


def test_message_to_unknown_or_foreign_chat(test_client, db_session: Session, settings):
    settings.require_verified_payment = False
    owner = create_test_user(db_session, nickname="owner")
    stranger = create_test_user(db_session, nickname="stranger")
    chat = open_chat(test_client, auth_headers(owner, settings))

    foreign = test_client.post(
        "/api/chat/message",
        json={"chatId": chat["chatId"], "message": "hi"},
        headers=auth_headers(stranger, settings),
    )
    unknown = test_client.post(
        "/api/chat/message",
        json={"chatId": chat["chatId"] + 100, "message": "hi"},
        headers=auth_headers(owner, settings),
    )
    blank = test_client.post(
        "/api/chat/message",
        json={"chatId": chat["chatId"], "message": "   "},
        headers=auth_headers(owner, settings),
    )

    assert foreign.status_code == status.HTTP_403_FORBIDDEN
    assert unknown.status_code == status.HTTP_404_NOT_FOUND
    assert blank.status_code == status.HTTP_400_BAD_REQUEST


def test_history_and_single_chat(test_client, db_session: Session, settings):
    settings.require_verified_payment = False
    user = create_test_user(db_session)
    other = create_test_user(db_session, nickname="other")
    job = create_test_job(db_session, title="Data Analyst")
    headers = auth_headers(user, settings)
    first = open_chat(test_client, headers, job_id=job.id)
    open_chat(test_client, headers)
    open_chat(test_client, auth_headers(other, settings))

    history = test_client.get("/api/chat/history", headers=headers).json()
    single = test_client.get(f"/api/chat/{first['chatId']}", headers=headers)
    hidden = test_client.get(f"/api/chat/{first['chatId']}", headers=auth_headers(other, settings))

    assert len(history) == 2
    assert single.status_code == status.HTTP_200_OK
    assert single.json()["job"]["title"] == "Data Analyst"
    assert hidden.status_code == status.HTTP_404_NOT_FOUND


def test_general_context_lists_recent_jobs(db_session: Session):
    user = create_test_user(db_session)
    for index in range(7):
        create_test_job(db_session, title=f"Job {index}")
    transaction = logic.record_transaction(db_session, user.id, models.TransactionType.CHAT, 1)
    chat = models.Chat(user_id=user.id, transaction_id=transaction.id)
    db_session.add(chat)
    db_session.commit()

    context = logic.build_chat_context(db_session, chat)

    assert context.startswith("Here are some recent jobs")
    assert context.count("Title: ") == 5


def test_system_prompt_includes_context():
    assert llm_interaction.build_system_prompt("") == llm_interaction.CAREER_ASSISTANT_PERSONA
    prompt = llm_interaction.build_system_prompt("Title: Rust Engineer")
    assert prompt.startswith(llm_interaction.CAREER_ASSISTANT_PERSONA)
    assert prompt.endswith("Title: Rust Engineer")


def test_underpriced_transaction_cannot_open_chat(test_client, db_session: Session, settings):
    user = create_test_user(db_session)
    headers = auth_headers(user, settings)
    created = test_client.post(
        "/api/payments/create", json={"type": "CHAT", "amount": 0.0001}, headers=headers
    ).json()
    test_client.post(
        "/api/payments/callback",
        json={"transaction_id": "tx", "reference": created["reference"], "status": "success"},
    )

    response = test_client.post("/api/chat/complete", json={"transactionId": created["id"]}, headers=headers)

    assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
    assert db_session.query(models.Chat).count() == 0
