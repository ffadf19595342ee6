import json
import uuid

import pytest

from sqlalchemy import select

from app.models.models import ClosetItem, ExtractedItem, PhotoExtraction
from app.services import extraction as extraction_service
from app.services.extraction import ExtractionConflict, ExtractionNotFound
from app.services.vision.errors import ModelRejected
from app.services.vision.extraction import normalize_bounding_box, normalize_extraction
from tests.fixtures import extraction_text, make_client

IMAGE = "https://img.example.com/closet.jpg"


def test_percent_and_normalized_boxes():
    box, scale = normalize_bounding_box({"x1": 20, "y1": 10, "x2": 80, "y2": 55})
    assert scale == "percent"
    assert (box.x1, box.y1, box.x2, box.y2) == pytest.approx((0.2, 0.1, 0.8, 0.55))

    box, scale = normalize_bounding_box([0.25, 0.5, 0.75, 0.95])
    assert scale == "normalized"
    assert (box.x1, box.y2) == (0.25, 0.95)


def test_box_corners_are_ordered_and_clamped():
    box, _ = normalize_bounding_box({"x1": 80, "y1": 60, "x2": 20, "y2": 120})
    assert (box.x1, box.y1, box.x2, box.y2) == pytest.approx((0.2, 0.6, 0.8, 1.0))


@pytest.mark.parametrize("raw", [None, {}, [1, 2, 3], {"x1": "a", "y1": 0, "x2": 1, "y2": 1}])
def test_unusable_box(raw):
    assert normalize_bounding_box(raw) == (None, "normalized")


def test_normalize_extraction_items():
    result = normalize_extraction(extraction_text())
    assert [i.item_id for i in result.items] == ["top_1", "bottom_1"]
    top = result.items[0]
    assert top.box_scale == "percent"
    assert top.attributes.formality_level == 55
    assert top.attributes.style_tags == ["Smart Casual"]
    assert result.image_analysis == {"lighting": "good", "background": "plain"}
    assert result.confidence_flags == []
    assert result.high_confidence_count(0.7) == 1


def test_missing_box_defaults_to_full_frame():
    raw = json.dumps({"items": [{"category": "hat"}, {"item_id": "x", "category": "scarf"}, {"item_id": "x", "category": "belt"}]})
    result = normalize_extraction(raw)
    assert [i.item_id for i in result.items] == ["item_0", "x", "x_2"]
    box = result.items[0].bounding_box
    assert (box.x1, box.y1, box.x2, box.y2) == (0.0, 0.0, 1.0, 1.0)
    assert result.confidence_flags == ["bounding_box_defaulted"]


def test_unparseable_extraction():
    result = normalize_extraction("no items visible")
    assert result.items == []
    assert result.confidence_flags == ["parsing_failed"]


@pytest.mark.asyncio
async def test_run_extraction_persists_items(session, user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, "outfit", client=make_client(extraction_text()))
    e = run.extraction
    assert e.status == "completed"
    assert e.extraction_type == "outfit"
    assert e.extracted_items_count == 2
    assert e.processing_metadata["high_confidence_items"] == 1
    assert e.processing_metadata["total_items_detected"] == 2
    assert e.processing_metadata["ai_model_used"] == "test-vision"
    assert [i.item_id for i in run.items] == ["top_1", "bottom_1"]
    assert run.items[0].bounding_box == pytest.approx({"x1": 0.2, "y1": 0.1, "x2": 0.8, "y2": 0.55})


@pytest.mark.asyncio
async def test_run_extraction_model_failure_marks_failed(session, user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client(ModelRejected(400, "bad")))
    assert run.extraction.status == "failed"
    assert run.extraction.error == "model_failed:ModelRejected"
    assert run.items == []


@pytest.mark.asyncio
async def test_run_extraction_unparseable_reply(session, user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client("nothing here"))
    assert run.extraction.status == "completed"
    assert run.extraction.confidence_flags == ["parsing_failed"]
    assert run.items == []


@pytest.mark.asyncio
async def test_run_extraction_rejects_unknown_mode(session, user):
    with pytest.raises(ValueError):
        await extraction_service.run_extraction(session, user.id, IMAGE, "flatlay", client=make_client("{}"))


@pytest.mark.asyncio
async def test_approve_creates_closet_items(session, user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client(extraction_text()))
    eid = run.extraction.id
    report = await extraction_service.approve_extracted_items(session, str(user.id), str(eid), ["top_1", "top_1", "ghost"])
    assert [i for i, _ in report.approved] == ["top_1"]
    assert report.failed == [("top_1", "duplicate_in_batch"), ("ghost", "not_found")]

    e = await extraction_service.get_extraction(session, user.id, eid)
    assert e.approved_items_count == 1
    assert e.user_reviewed is True

    item = await session.get(ClosetItem, uuid.UUID(report.approved[0][1]))
    assert item.source == "photo_extraction"
    assert item.source_extraction_id == eid
    assert item.color == "white"
    assert item.style_tags == ["smart-casual"]
    assert item.season_tags == ["spring", "summer"]
    assert item.formality_level == 55

    again = await extraction_service.approve_extracted_items(session, user.id, eid, ["top_1"])
    assert again.failed == [("top_1", "already_catalogued")]


@pytest.mark.asyncio
async def test_reject_extracted_item(session, user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client(extraction_text()))
    eid = run.extraction.id
    await extraction_service.approve_extracted_items(session, user.id, eid, ["top_1"])

    row = await extraction_service.reject_extracted_item(session, user.id, eid, "bottom_1")
    assert row.user_rejected is True
    with pytest.raises(ExtractionConflict) as exc:
        await extraction_service.reject_extracted_item(session, user.id, eid, "bottom_1")
    assert exc.value.code == "already_rejected"
    with pytest.raises(ExtractionConflict) as exc:
        await extraction_service.reject_extracted_item(session, user.id, eid, "top_1")
    assert exc.value.code == "already_catalogued"
    with pytest.raises(ExtractionNotFound) as exc:
        await extraction_service.reject_extracted_item(session, user.id, eid, "ghost")
    assert exc.value.code == "extracted_item_not_found"


@pytest.mark.asyncio
async def test_extractions_are_owner_scoped(session, user, other_user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client(extraction_text()))
    with pytest.raises(ExtractionNotFound):
        await extraction_service.get_extraction(session, other_user.id, run.extraction.id)
    assert await extraction_service.list_extractions(session, other_user.id) == []
    assert len(await extraction_service.list_extractions(session, user.id)) == 1


@pytest.mark.asyncio
async def test_approve_applies_user_edits(session, user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client(extraction_text()))
    eid = run.extraction.id
    report = await extraction_service.approve_extracted_items(
        session,
        user.id,
        eid,
        ["top_1"],
        edited_attributes={"top_1": {"color": "cream", "size": "M"}},
        feedback={"top_1": "It is cream, not white"},
    )
    item = await session.get(ClosetItem, uuid.UUID(report.approved[0][1]))
    assert item.color == "cream"
    assert item.size == "M"
    assert item.material == "cotton"
    assert item.extraction_metadata["item_id"] == "top_1"
    assert item.extraction_metadata["bounding_box"] == pytest.approx({"x1": 0.2, "y1": 0.1, "x2": 0.8, "y2": 0.55})
    assert item.extraction_metadata["original_attributes"]["color"] == "white"
    assert "confidence_scores" in item.extraction_metadata

    row = (
        await session.execute(
            select(ExtractedItem).where(ExtractedItem.extraction_id == eid, ExtractedItem.item_id == "top_1")
        )
    ).scalar_one()
    assert row.user_edited_attributes == {"color": "cream", "size": "M"}
    assert row.user_feedback == "It is cream, not white"
    assert row.attributes["color"] == "white"


@pytest.mark.asyncio
async def test_reject_keeps_feedback(session, user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client(extraction_text()))
    row = await extraction_service.reject_extracted_item(session, user.id, run.extraction.id, "bottom_1", "Not mine")
    assert row.user_feedback == "Not mine"


@pytest.mark.asyncio
async def test_delete_extraction_keeps_closet_items(session, user, other_user):
    run = await extraction_service.run_extraction(session, user.id, IMAGE, client=make_client(extraction_text()))
    eid = run.extraction.id
    report = await extraction_service.approve_extracted_items(session, user.id, eid, ["top_1"])
    closet_id = uuid.UUID(report.approved[0][1])

    with pytest.raises(ExtractionNotFound):
        await extraction_service.delete_extraction(session, other_user.id, eid)

    await extraction_service.delete_extraction(session, user.id, eid)
    assert await session.get(PhotoExtraction, eid) is None
    rows = (await session.execute(select(ExtractedItem).where(ExtractedItem.extraction_id == eid))).scalars().all()
    assert rows == []
    item = (await session.execute(select(ClosetItem).where(ClosetItem.id == closet_id))).scalar_one()
    await session.refresh(item)
    assert item.source_extraction_id is None
    assert item.source == "photo_extraction"
