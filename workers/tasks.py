from .celery_app import celery
import asyncio
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from app.core.config import settings
from app.models.models import OutfitAnalysis
from app.services import analysis_pipeline
from app.services.analysis_writer import AnalysisPersistenceError
from app.services.vision.client import build_client
from app.storage.r2 import ImageRefError

logger = logging.getLogger("uvicorn.error")


@celery.task(name="tasks.analyze_outfit")
def analyze_outfit(analysis_id: str) -> dict:
    """Run a queued outfit analysis end to end."""

    async def _run() -> dict:
        engine = create_async_engine(settings.DATABASE_URL, echo=False)
        Session = async_sessionmaker(engine, expire_on_commit=False)
        try:
            async with Session() as session:
                try:
                    report = await analysis_pipeline.process_analysis(session, analysis_id, client=build_client())
                    return {
                        "ok": True,
                        "analysis_id": analysis_id,
                        "failed_steps": report.failed,
                        "detections": report.detections_inserted,
                    }
                except analysis_pipeline.AnalysisNotFound:
                    return {"ok": False, "error": "analysis_not_found"}
                except analysis_pipeline.AnalysisAlreadyCompleted:
                    return {"ok": True, "analysis_id": analysis_id, "skipped": True}
                except (ImageRefError, AnalysisPersistenceError) as e:
                    return {"ok": False, "error": str(e), "analysis_id": analysis_id}
                except Exception as e:
                    logger.exception("tasks: analyze_outfit crashed analysis_id=%s", analysis_id)
                    await session.rollback()
                    analysis = await session.get(OutfitAnalysis, UUID(analysis_id))
                    if analysis and analysis.status != "completed":
                        analysis.status = "failed"
                        analysis.error = str(e)[:500]
                        await session.commit()
                    return {"ok": False, "error": str(e), "analysis_id": analysis_id}
        finally:
            await engine.dispose()

    return asyncio.run(_run())


@celery.task(name="tasks.fail_stale_analyses")
def fail_stale_analyses(older_than_s: int | None = None) -> dict:
    """Fail analyses stuck in pending/processing past the stale cutoff."""

    async def _run() -> dict:
        engine = create_async_engine(settings.DATABASE_URL, echo=False)
        Session = async_sessionmaker(engine, expire_on_commit=False)
        try:
            async with Session() as session:
                failed = await analysis_pipeline.fail_stale_analyses(session, older_than_s)
                return {"ok": True, "failed": failed}
        finally:
            await engine.dispose()

    return asyncio.run(_run())
