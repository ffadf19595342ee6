import httpx
import pytest

from app.services.vision.client import set_client
from tests.fixtures import extraction_text, make_client

IMAGE = "https://img.example.com/closet.jpg"


@pytest.mark.asyncio
async def test_closet_item_crud(client: httpx.AsyncClient):
    resp = await client.post(
        "/v1/closet/items",
        json={
            "category": " Trousers ",
            "color": "khaki",
            "style_tags": ["Smart  Casual", "smart casual"],
            "season_tags": ["Autumn", "monsoon"],
            "condition": "Excellent",
        },
    )
    assert resp.status_code == 201
    item = resp.json()
    assert item["category"] == "trousers"
    assert item["style_tags"] == ["smart-casual"]
    assert item["season_tags"] == ["autumn"]
    assert item["condition"] == "excellent"
    assert item["source"] == "manual"

    patched = await client.patch(f"/v1/closet/items/{item['id']}", json={"color": "olive", "season_tags": []})
    assert patched.status_code == 200
    assert patched.json()["color"] == "olive"
    assert patched.json()["season_tags"] == ["all-season"]

    listed = await client.get("/v1/closet/items", params={"category": "TROUSERS"})
    assert [i["id"] for i in listed.json()] == [item["id"]]
    assert (await client.get("/v1/closet/items", params={"category": "shirt"})).json() == []

    deleted = await client.delete(f"/v1/closet/items/{item['id']}")
    assert deleted.status_code == 204
    missing = await client.get(f"/v1/closet/items/{item['id']}")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "closet_item_not_found"


@pytest.mark.asyncio
async def test_invalid_condition_is_400(client: httpx.AsyncClient):
    resp = await client.post("/v1/closet/items", json={"category": "shirt", "condition": "shredded"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "invalid_condition"


@pytest.mark.asyncio
async def test_unknown_item_id_is_404(client: httpx.AsyncClient):
    assert (await client.get("/v1/closet/items/not-a-uuid")).status_code == 404
    assert (await client.delete("/v1/closet/items/3f1c8a52-2a44-4d9e-9a55-0c7f5e0b7a11")).status_code == 404


@pytest.mark.asyncio
async def test_extraction_review_flow(client: httpx.AsyncClient):
    set_client(make_client(extraction_text()))
    resp = await client.post("/v1/extractions", json={"image_ref": IMAGE, "mode": "outfit"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert [i["item_id"] for i in body["items"]] == ["top_1", "bottom_1"]
    eid = body["extraction_id"]

    approve = await client.post(f"/v1/extractions/{eid}/approve", json={"item_ids": ["top_1", "ghost"]})
    assert approve.status_code == 200
    assert [a["item_id"] for a in approve.json()["approved"]] == ["top_1"]
    assert approve.json()["failed"] == [{"item_id": "ghost", "reason": "not_found"}]

    reject = await client.post(f"/v1/extractions/{eid}/items/bottom_1/reject")
    assert reject.status_code == 200
    assert reject.json()["user_rejected"] is True
    conflict = await client.post(f"/v1/extractions/{eid}/items/top_1/reject")
    assert conflict.status_code == 409
    assert conflict.json()["detail"] == "already_catalogued"

    detail = (await client.get(f"/v1/extractions/{eid}")).json()
    assert detail["approved_items_count"] == 1
    assert detail["user_reviewed"] is True

    listed = (await client.get("/v1/extractions")).json()["extractions"]
    assert [e["extraction_id"] for e in listed] == [eid]

    closet = (await client.get("/v1/closet/items")).json()
    assert len(closet) == 1
    assert closet[0]["source"] == "photo_extraction"
    assert closet[0]["source_extraction_id"] == eid


@pytest.mark.asyncio
async def test_extraction_mode_is_validated(client: httpx.AsyncClient):
    resp = await client.post("/v1/extractions", json={"image_ref": IMAGE, "mode": "flatlay"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_approve_with_edits_and_delete_extraction(client: httpx.AsyncClient):
    set_client(make_client(extraction_text()))
    eid = (await client.post("/v1/extractions", json={"image_ref": IMAGE})).json()["extraction_id"]

    approve = await client.post(
        f"/v1/extractions/{eid}/approve",
        json={"item_ids": ["top_1"], "edits": {"top_1": {"attributes": {"color": "cream"}, "feedback": "cream"}}},
    )
    assert approve.status_code == 200
    closet_id = approve.json()["approved"][0]["closet_item_id"]

    item = (await client.get(f"/v1/closet/items/{closet_id}")).json()
    assert item["color"] == "cream"
    assert item["extraction_metadata"]["original_attributes"]["color"] == "white"

    reject = await client.post(f"/v1/extractions/{eid}/items/bottom_1/reject", json={"feedback": "not mine"})
    assert reject.json()["user_feedback"] == "not mine"

    detail = (await client.get(f"/v1/extractions/{eid}")).json()
    top = next(i for i in detail["items"] if i["item_id"] == "top_1")
    assert top["user_edited_attributes"] == {"color": "cream"}
    assert top["user_feedback"] == "cream"

    assert (await client.delete(f"/v1/extractions/{eid}")).status_code == 204
    assert (await client.get(f"/v1/extractions/{eid}")).status_code == 404
    assert (await client.delete(f"/v1/extractions/{eid}")).status_code == 404
    item = (await client.get(f"/v1/closet/items/{closet_id}")).json()
    assert item["source_extraction_id"] is None
