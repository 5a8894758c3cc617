from __future__ import annotations

import base64

from puretools.core import config as app_config
from puretools.models.credit import CreditTransaction, TransactionType, UsageLog
from puretools.services.credits import CreditsService

LONG_TEXT = " ".join(["The quarterly report shows steady growth across all regions."] * 10)


def _fund(db_session, user_id: int, amount: int = 50) -> None:
    CreditsService(db_session).add_credits(
        user_id=user_id, amount=amount, type=TransactionType.PURCHASE, description="Seed"
    )


def test_estimate_endpoint(client, db_session, users):
    user, _ = users
    _fund(db_session, user.id, 5)

    res = client.post("/ai/estimate", json={"operation": "summarize", "quantity": 20_000})

    assert res.status_code == 200
    assert res.json() == {
        "operation": "summarize",
        "quantity": 20_000,
        "base_credits": 6,
        "service_fee": 1,
        "total_credits": 7,
        "estimated_time_seconds": 60,
        "has_enough_credits": False,
    }


def test_estimate_rejects_video_beyond_last_tier(client):
    res = client.post("/ai/estimate", json={"operation": "video", "quantity": 25})

    assert res.status_code == 400
    assert res.json()["error"] == "VALIDATION_ERROR"


def test_translate_charges_and_logs(client, db_session, users, fake_ai):
    user, _ = users
    _fund(db_session, user.id)

    res = client.post("/ai/translate", json={"text": "hello world", "target_language": "de"})

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["translation"] == "[de] hello world"
    assert body["word_count"] == 2
    assert body["credits_used"] == 1
    assert body["new_balance"] == 49
    assert body["billing_error"] is None
    assert [name for name, _ in fake_ai.calls] == ["translate"]

    usage = db_session.query(CreditTransaction).filter_by(type=TransactionType.USAGE.value).one()
    assert usage.amount == -1
    assert usage.description == "Translation to de (2 words)"
    assert usage.details["operation"] == "translate"
    assert db_session.query(UsageLog).one().tool_type == "translate"


def test_translate_estimate_only_does_not_call_or_charge(client, db_session, users, fake_ai):
    user, _ = users
    _fund(db_session, user.id)

    res = client.post("/ai/translate", json={"text": "hello world", "target_language": "de", "estimate_only": True})

    assert res.status_code == 200
    assert res.json()["total_credits"] == 1
    assert res.json()["has_enough_credits"] is True
    assert fake_ai.calls == []
    assert CreditsService(db_session).get_balance(user.id) == 50


def test_insufficient_balance_is_402_and_skips_provider(client, fake_ai):
    res = client.post("/ai/images", json={"prompt": "a lighthouse at dusk", "quality": "hd", "size": "1792x1024"})

    assert res.status_code == 402
    body = res.json()
    assert body["error"] == "INSUFFICIENT_BALANCE"
    assert body["message"] == "Insufficient credits. 11 credits are required."
    assert body["details"] == {"required": 11, "balance": 0}
    assert fake_ai.calls == []


def test_provider_failure_is_502_without_charge(client, db_session, users, failing_ai):
    user, _ = users
    _fund(db_session, user.id)

    res = client.post("/ai/translate", json={"text": "hello world", "target_language": "de"})

    assert res.status_code == 502
    assert res.json()["error"] == "UPSTREAM_ERROR"
    assert CreditsService(db_session).get_balance(user.id) == 50
    assert db_session.query(UsageLog).count() == 0


def test_summarize(client, db_session, users):
    user, _ = users
    _fund(db_session, user.id)

    res = client.post("/ai/summarize", json={"text": LONG_TEXT, "length": "short", "style": "bullet"})

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["original_word_count"] == 90
    assert body["summary_word_count"] == 5
    assert body["compression_ratio"] == 94
    assert body["credits_used"] == 1


def test_summarize_requires_minimum_length(client):
    res = client.post("/ai/summarize", json={"text": "too short"})

    assert res.status_code == 422


def test_speech_hd(client, db_session, users, fake_ai):
    user, _ = users
    _fund(db_session, user.id)

    res = client.post("/ai/speech", json={"text": "Hello there", "model": "tts-1-hd", "voice": "nova"})

    assert res.status_code == 200, res.text
    body = res.json()
    assert base64.b64decode(body["audio_base64"]) == b"fake-audio"
    assert body["content_type"] == "audio/mpeg"
    assert body["character_count"] == 11
    assert body["credits_used"] == 1
    assert db_session.query(UsageLog).one().details["operation"] == "text_to_speech_hd"


def test_image_generation(client, db_session, users):
    user, _ = users
    _fund(db_session, user.id)

    res = client.post("/ai/images", json={"prompt": "a lighthouse at dusk"})

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["image_url"] == "https://images.example.invalid/1.png"
    assert body["credits_used"] == 6
    assert body["new_balance"] == 44


def test_transcribe_charges_reported_duration(client, db_session, users, fake_ai):
    user, _ = users
    _fund(db_session, user.id)
    fake_ai.transcription_duration = 600.0

    res = client.post(
        "/ai/transcribe",
        files={"file": ("meeting.mp3", b"x" * (16 * 1024 * 10), "audio/mpeg")},
        data={"language": "en"},
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["text"] == "hello world"
    assert body["duration_seconds"] == 600.0
    assert body["credits_used"] == 11
    assert body["new_balance"] == 39
    assert fake_ai.calls[0][1]["language"] == "en"


def test_transcribe_estimate_only(client, db_session, users, fake_ai):
    user, _ = users
    _fund(db_session, user.id)

    res = client.post(
        "/ai/transcribe",
        files={"file": ("clip.mp3", b"x" * (16 * 1024 * 10), "audio/mpeg")},
        data={"estimate_only": "true"},
    )

    assert res.status_code == 200
    assert res.json()["quantity"] == 10
    assert res.json()["total_credits"] == 2
    assert fake_ai.calls == []


def test_transcribe_rejects_large_files(client):
    app_config.settings.AI_MAX_AUDIO_BYTES = 10

    res = client.post("/ai/transcribe", files={"file": ("big.mp3", b"x" * 11, "audio/mpeg")})

    assert res.status_code == 413
    assert res.json()["error"] == "PAYLOAD_TOO_LARGE"


def test_transcribe_accepts_file_at_size_limit(client, db_session, users, fake_ai):
    user, _ = users
    _fund(db_session, user.id)
    app_config.settings.AI_MAX_AUDIO_BYTES = 16 * 1024 * 10

    res = client.post(
        "/ai/transcribe",
        files={"file": ("clip.mp3", b"x" * (16 * 1024 * 10), "audio/mpeg")},
        data={"estimate_only": "true"},
    )

    assert res.status_code == 200, res.text
    assert res.json()["quantity"] == 10


def test_transcribe_rejects_upload_far_over_limit_without_calling_provider(client, fake_ai):
    app_config.settings.AI_MAX_AUDIO_BYTES = 1024

    res = client.post("/ai/transcribe", files={"file": ("long.mp3", b"x" * (1024 * 1024), "audio/mpeg")})

    assert res.status_code == 413
    assert res.json()["error"] == "PAYLOAD_TOO_LARGE"
    assert fake_ai.calls == []
