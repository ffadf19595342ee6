from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.models.models import GarmentDetection, OutfitAnalysis
from app.services import analysis_pipeline
from app.services.analysis_pipeline import (
    AnalysisAlreadyCompleted,
    AnalysisNotFound,
    create_analysis,
    fail_stale_analyses,
    process_analysis,
    run_analysis,
)
from app.services.vision.errors import ModelRejected, ModelUnavailable
from app.storage.r2 import ImageRefError
from tests.fixtures import clinical_text, legacy_text, make_client

IMAGE = "https://img.example.com/outfit.jpg"


@pytest.mark.asyncio
async def test_run_analysis_end_to_end(session, user):
    client = make_client(clinical_text())
    outcome = await run_analysis(session, user.id, IMAGE, ["minimal"], client=client)
    a = outcome.analysis
    assert a.status == "completed"
    assert a.source == "model"
    assert a.attempts == 1
    assert a.model_meta["attempts"] == 1
    assert a.model_meta["model"] == "test-vision"
    assert a.result_json["overall_score"] == 92.5
    assert outcome.report.detections_inserted == 1


@pytest.mark.asyncio
async def test_hints_default_to_user_preferences(session, user):
    client = make_client(legacy_text())
    outcome = await run_analysis(session, user.id, IMAGE, client=client)
    assert outcome.analysis.preference_hints == ["minimal"]
    prompt = client.provider.calls[0]["messages"][-1]["content"][0]["text"]
    assert "minimal" in prompt
    assert "converted_from_legacy_format" in outcome.analysis.result_json["confidence_flags"]


@pytest.mark.asyncio
async def test_explicit_empty_hints_are_kept(session, user):
    analysis = await create_analysis(session, user.id, IMAGE, [])
    assert analysis.preference_hints == []


@pytest.mark.asyncio
async def test_model_outage_stores_fallback(session, user):
    client = make_client(ModelUnavailable("down"))
    outcome = await run_analysis(session, user.id, IMAGE, client=client)
    a = outcome.analysis
    assert a.status == "completed"
    assert a.source == "fallback"
    assert a.result_json["confidence_flags"] == ["model_unavailable"]
    assert a.result_json["completeness"] == 10
    assert a.model_meta["error"] == "ModelUnavailable"
    assert len(client.sleeps) == 2


@pytest.mark.asyncio
async def test_rejected_request_stores_fallback_without_retry(session, user):
    client = make_client(ModelRejected(400, "unsupported image"))
    outcome = await run_analysis(session, user.id, IMAGE, client=client)
    assert outcome.analysis.source == "fallback"
    assert client.sleeps == []


@pytest.mark.asyncio
async def test_garbage_reply_stores_parsing_fallback(session, user):
    outcome = await run_analysis(session, user.id, IMAGE, client=make_client("I can't see an outfit"))
    assert outcome.analysis.source == "model"
    assert outcome.analysis.result_json["confidence_flags"] == ["parsing_failed"]
    res = await session.execute(select(GarmentDetection).where(GarmentDetection.analysis_id == outcome.analysis.id))
    assert [d.detection_id for d in res.scalars().all()] == ["fallback_item"]


@pytest.mark.asyncio
async def test_unusable_image_ref_fails_the_record(session, user):
    client = make_client(clinical_text())
    with pytest.raises(ImageRefError):
        await run_analysis(session, user.id, "   ", client=client)
    res = await session.execute(select(OutfitAnalysis).where(OutfitAnalysis.user_id == user.id))
    a = res.scalar_one()
    assert a.status == "failed"
    assert a.error == "image_ref_required"
    assert client.provider.calls == []


@pytest.mark.asyncio
async def test_completed_analysis_is_not_reprocessed(session, user):
    outcome = await run_analysis(session, user.id, IMAGE, client=make_client(clinical_text()))
    with pytest.raises(AnalysisAlreadyCompleted):
        await process_analysis(session, outcome.analysis.id, client=make_client(clinical_text()))


@pytest.mark.asyncio
async def test_unknown_analysis_raises(session, user):
    with pytest.raises(AnalysisNotFound):
        await process_analysis(session, "3f1c8a52-2a44-4d9e-9a55-0c7f5e0b7a11", client=make_client("{}"))


@pytest.mark.asyncio
async def test_get_analysis_is_owner_scoped(session, user, other_user):
    analysis = await create_analysis(session, user.id, IMAGE, [])
    assert (await analysis_pipeline.get_analysis(session, str(user.id), str(analysis.id))).id == analysis.id
    with pytest.raises(AnalysisNotFound):
        await analysis_pipeline.get_analysis(session, other_user.id, analysis.id)
    with pytest.raises(AnalysisNotFound):
        await analysis_pipeline.get_analysis(session, user.id, "not-a-uuid")


@pytest.mark.asyncio
async def test_stale_sweep_fails_only_old_open_records(session, user):
    old = await create_analysis(session, user.id, IMAGE, [])
    fresh = await create_analysis(session, user.id, IMAGE, [])
    done = await run_analysis(session, user.id, IMAGE, client=make_client(clinical_text()))

    long_ago = datetime.now(timezone.utc) - timedelta(hours=2)
    old.status = "processing"
    old.updated_at = long_ago
    done.analysis.updated_at = long_ago
    await session.commit()

    assert await fail_stale_analyses(session, older_than_s=900) == 1
    for a in (old, fresh, done.analysis):
        await session.refresh(a)
    assert old.status == "failed"
    assert old.error == "stale_timeout"
    assert fresh.status == "pending"
    assert done.analysis.status == "completed"
    assert await fail_stale_analyses(session, older_than_s=900) == 0


@pytest.mark.asyncio
async def test_late_failure_does_not_touch_completed_record(session, user):
    outcome = await run_analysis(session, user.id, IMAGE, client=make_client(clinical_text()))
    await analysis_pipeline._mark_failed(session, outcome.analysis.id, "stale_worker_crashed")
    await session.refresh(outcome.analysis)
    assert outcome.analysis.status == "completed"
    assert outcome.analysis.error is None
    assert outcome.analysis.result_json["overall_score"] == 92.5
