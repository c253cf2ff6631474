"""
Visit endpoints: upload completion, manual retry and status lookups.
"""

AUDIO = "https://storage.example/visit-1.m4a"


def test_upload_complete_submits_for_transcription(client, visits, collaborators):
    visits.seed("visit-1")

    response = client.post("/visits/visit-1/upload-complete", json={"audio_ref": AUDIO})

    assert response.status_code == 202
    data = response.json()["data"]
    assert data["processing_status"] == "transcribing"
    assert data["transcription_id"] == "tx-1"
    assert collaborators.transcription.submitted == [AUDIO]


def test_upload_complete_requires_audio_ref(client, visits):
    visits.seed("visit-1")

    response = client.post("/visits/visit-1/upload-complete", json={"audio_ref": ""})

    assert response.status_code == 422
    assert response.json()["error"] == "INVALID_INPUT"


def test_unknown_visit_is_404(client):
    response = client.get("/visits/missing")

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "VISIT_NOT_FOUND"
    assert body["details"] == {"visit_id": "missing"}


def test_get_visit_includes_post_commit_ledger(client, visits, clock):
    visits.seed(
        "visit-1",
        processing_status="completed",
        status="completed",
        summary="Blood pressure reviewed.",
        post_commit_status="partial_failure",
        post_commit_completed_operations=["syncMedications"],
        post_commit_failed_operations=["pushNotification"],
        post_commit_operation_attempts={"pushNotification": 1},
        post_commit_operation_next_retry_at={"pushNotification": clock.now},
        post_commit_retry_eligible=True,
    )

    data = client.get("/visits/visit-1").json()["data"]

    assert data["summary"] == "Blood pressure reviewed."
    ledger = data["post_commit"]
    assert ledger["status"] == "partial_failure"
    assert ledger["failed_operations"] == ["pushNotification"]
    assert ledger["operation_attempts"] == {"pushNotification": 1}
    assert ledger["retry_eligible"] is True


def test_retry_too_soon_is_429_with_retry_after(client, visits, clock):
    visits.seed("visit-1", processing_status="failed", audio_ref=AUDIO, last_retry_at=clock.now - 10_000)

    response = client.post("/visits/visit-1/retry")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "20"
    body = response.json()
    assert body["error"] == "RETRY_TOO_SOON"
    assert body["message"] == "Please wait 20 more seconds before retrying"


def test_retry_without_audio_or_transcript_is_400(client, visits):
    visits.seed("visit-1", processing_status="failed")

    response = client.post("/visits/visit-1/retry")

    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_AUDIO"


def test_retry_while_processing_is_409(client, visits):
    visits.seed("visit-1", processing_status="transcribing", audio_ref=AUDIO, transcription_id="tx-9")

    response = client.post("/visits/visit-1/retry")

    assert response.status_code == 409
    assert response.json()["error"] == "INVALID_VISIT_STATE"


def test_retry_with_transcript_summarizes_in_background(client, visits, collaborators):
    visits.seed(
        "visit-1",
        processing_status="failed",
        audio_ref=AUDIO,
        transcription_id="tx-9",
        transcript_text="Your blood pressure is high.",
        processing_error="Summarization failed",
    )

    response = client.post("/visits/visit-1/retry")

    assert response.status_code == 202
    data = response.json()["data"]
    assert data["path"] == "summarize"
    assert data["processing_status"] == "summarizing"
    assert data["retry_count"] == 1
    assert collaborators.summarizer.transcripts == ["Your blood pressure is high."]
    assert visits.docs["visit-1"]["processing_status"] == "completed"


def test_retry_without_transcript_resubmits_audio(client, visits, collaborators):
    visits.seed("visit-1", processing_status="failed", audio_ref=AUDIO)

    response = client.post("/visits/visit-1/retry")

    assert response.status_code == 202
    data = response.json()["data"]
    assert data["path"] == "retranscribe"
    assert data["processing_status"] == "transcribing"
    assert collaborators.transcription.submitted == [AUDIO]
