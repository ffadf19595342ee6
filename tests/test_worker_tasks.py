from sqlalchemy.ext.asyncio import create_async_engine

from app.services import analysis_pipeline
from app.services.analysis_writer import FanOutReport
from workers import tasks
from workers.celery_app import celery

AID = "3f1c8a52-2a44-4d9e-9a55-0c7f5e0b7a11"


def _sqlite_engine(*args, **kwargs):
    return create_async_engine("sqlite+aiosqlite://")


def test_routes_and_schedule():
    assert celery.conf.task_routes["tasks.analyze_outfit"] == {"queue": "images"}
    assert celery.conf.beat_schedule["fail-stale-analyses"]["task"] == "tasks.fail_stale_analyses"


def test_analyze_outfit_reports_success(monkeypatch):
    async def _process(session, analysis_id, *, client=None):
        return FanOutReport(analysis_id=str(analysis_id), succeeded=["scores"], failed=["detections"])

    monkeypatch.setattr(tasks, "create_async_engine", _sqlite_engine)
    monkeypatch.setattr(analysis_pipeline, "process_analysis", _process)
    out = tasks.analyze_outfit.run(AID)
    assert out == {"ok": True, "analysis_id": AID, "failed_steps": ["detections"], "detections": 0}


def test_analyze_outfit_missing_record(monkeypatch):
    async def _process(session, analysis_id, *, client=None):
        raise analysis_pipeline.AnalysisNotFound("analysis_not_found")

    monkeypatch.setattr(tasks, "create_async_engine", _sqlite_engine)
    monkeypatch.setattr(analysis_pipeline, "process_analysis", _process)
    assert tasks.analyze_outfit.run(AID) == {"ok": False, "error": "analysis_not_found"}


def test_analyze_outfit_skips_completed(monkeypatch):
    async def _process(session, analysis_id, *, client=None):
        raise analysis_pipeline.AnalysisAlreadyCompleted("analysis_already_completed")

    monkeypatch.setattr(tasks, "create_async_engine", _sqlite_engine)
    monkeypatch.setattr(analysis_pipeline, "process_analysis", _process)
    assert tasks.analyze_outfit.run(AID)["skipped"] is True


def test_fail_stale_sweep_task(monkeypatch):
    seen = {}

    async def _sweep(session, older_than_s=None):
        seen["older_than_s"] = older_than_s
        return 3

    monkeypatch.setattr(tasks, "create_async_engine", _sqlite_engine)
    monkeypatch.setattr(analysis_pipeline, "fail_stale_analyses", _sweep)
    assert tasks.fail_stale_analyses.run(600) == {"ok": True, "failed": 3}
    assert seen["older_than_s"] == 600
