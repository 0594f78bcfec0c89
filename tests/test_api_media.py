import asyncio
import uuid
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.workers.pool import WorkerPool


@pytest.fixture
def upstream_calls() -> list[httpx.Request]:
    return []


@pytest.fixture
def client(uploads, test_settings, upstream_calls):
    def handler(request: httpx.Request) -> httpx.Response:
        upstream_calls.append(request)
        if request.url.host == "storage.test":
            if "missing" in request.url.path:
                return httpx.Response(404, text="NoSuchKey")
            return httpx.Response(200, text="#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=5350000\nv0/playlist.m3u8\n")
        if request.url.host == "imgproxy.internal":
            return httpx.Response(
                200,
                content=b"RIFFwebp",
                headers={"Content-Type": "image/webp", "Content-Length": "8", "X-Origin": "imgproxy"},
            )
        raise httpx.ConnectError("unreachable", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    app.state.services = SimpleNamespace(uploads=uploads, http=http, settings=test_settings)
    yield TestClient(app)
    asyncio.run(http.aclose())
    del app.state.services


def _init(client, kind="video", mime="video/mp4", filename="clip.mp4"):
    resp = client.post(
        "/v1/media/init-upload",
        json={"mime": mime, "kind": kind, "filename": filename, "size": 1048576},
    )
    assert resp.status_code == 200
    return resp.json()


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_init_upload_response_shape(client) -> None:
    body = _init(client)
    assert set(body) == {"assetId", "bucket", "objectKey", "presignedUrl", "headers", "expiresIn"}
    assert body["bucket"] == "media-originals"
    assert body["headers"] == {"Content-Type": "video/mp4"}
    assert body["expiresIn"] == 900


def test_init_upload_validation_errors_are_400(client) -> None:
    resp = client.post("/v1/media/init-upload", json={"mime": "video/mp4", "kind": "video"})
    assert resp.status_code == 400
    assert "Missing required fields" in resp.json()["detail"]

    resp = client.post(
        "/v1/media/init-upload",
        json={"mime": "video/mp4", "kind": "gif", "filename": "a.gif", "size": 1},
    )
    assert resp.status_code == 400

    resp = client.post("/v1/media/init-upload", content=b"{broken", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Invalid request body"}


def test_init_upload_presign_failure_is_500(client, storage) -> None:
    storage.fail_presign = True
    resp = client.post(
        "/v1/media/init-upload",
        json={"mime": "image/png", "kind": "image", "filename": "a.png", "size": 1},
    )
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to generate upload URL"


def test_complete_flow(client, queue) -> None:
    body = _init(client)

    resp = client.post("/v1/media/complete", json={"assetId": body["assetId"]})
    assert resp.status_code == 200
    assert resp.json()["state"] == "processing"
    assert [j.type for j in queue.jobs] == ["transcode"]

    again = client.post("/v1/media/complete", json={"assetId": body["assetId"]})
    assert again.status_code == 404


def test_complete_rejects_bad_ids(client) -> None:
    assert client.post("/v1/media/complete", json={"assetId": "nope"}).status_code == 400
    assert client.post("/v1/media/complete", json={}).status_code == 400


def test_get_and_list_assets(client, repo) -> None:
    body = _init(client, kind="image", mime="image/png", filename="cat.png")
    client.post("/v1/media/complete", json={"assetId": body["assetId"]})

    resp = client.get(f"/v1/media/{body['assetId']}")
    assert resp.status_code == 200
    asset = resp.json()
    assert asset["id"] == body["assetId"]
    assert asset["state"] == "ready"
    assert asset["mimeType"] == "image/png"
    assert asset["objectKey"] == body["objectKey"]
    assert "createdAt" in asset
    assert "width" not in asset
    assert asset["urls"]["thumbnail"].startswith("http://img.test/")

    listing = client.get("/v1/media").json()
    assert listing["total"] == 1
    assert listing["assets"][0]["id"] == body["assetId"]


def test_get_asset_errors(client) -> None:
    assert client.get("/v1/media/not-a-uuid").status_code == 400
    assert client.get(f"/v1/media/{uuid.uuid4()}").status_code == 404


def test_delete_asset(client, repo) -> None:
    body = _init(client)

    resp = client.delete(f"/v1/media/{body['assetId']}")
    assert resp.status_code == 204
    assert client.get(f"/v1/media/{body['assetId']}").status_code == 404
    assert client.delete(f"/v1/media/{body['assetId']}").status_code == 404


def test_video_manifest(client, repo, upstream_calls) -> None:
    body = _init(client)
    repo.assets[uuid.UUID(body["assetId"])].state = "ready"

    resp = client.get(f"/v1/video/{body['assetId']}/master.m3u8")

    assert resp.status_code == 200
    assert resp.text.startswith("#EXTM3U")
    assert resp.headers["content-type"].startswith("application/vnd.apple.mpegurl")
    assert resp.headers["cache-control"] == "public, max-age=3600"
    assert resp.headers["access-control-allow-origin"] == "*"
    assert upstream_calls[0].url.path == f"/media-vod/{body['assetId']}/hls/master.m3u8"


def test_video_manifest_state_checks(client, repo) -> None:
    video = _init(client)
    resp = client.get(f"/v1/video/{video['assetId']}/master.m3u8")
    assert resp.status_code == 202
    assert resp.json()["detail"] == "Video is still processing"

    image = _init(client, kind="image", mime="image/png", filename="a.png")
    assert client.get(f"/v1/video/{image['assetId']}/master.m3u8").status_code == 400
    assert client.get(f"/v1/video/{uuid.uuid4()}/master.m3u8").status_code == 404
    assert client.get("/v1/video/garbage/master.m3u8").status_code == 400


def test_video_manifest_upstream_status_is_passed_through(client, repo, uploads) -> None:
    body = _init(client, filename="missing.mp4")
    asset_id = uuid.UUID(body["assetId"])
    repo.assets[asset_id].state = "ready"
    uploads.storage.presigned_get_url = lambda bucket, key, expires: f"http://storage.test/{bucket}/missing/{key}"

    resp = client.get(f"/v1/video/{asset_id}/master.m3u8")
    assert resp.status_code == 404


def test_image_proxy_forwards_accept_and_sets_cache(client, upstream_calls) -> None:
    resp = client.get("/v1/image/sig123/rs:fit:400:400/aGVsbG8", headers={"Accept": "image/webp"})

    assert resp.status_code == 200
    assert resp.content == b"RIFFwebp"
    assert resp.headers["cache-control"] == "public, max-age=31536000, immutable"
    assert resp.headers["x-origin"] == "imgproxy"
    sent = upstream_calls[0]
    assert str(sent.url) == "http://imgproxy.internal:8080/sig123/rs:fit:400:400/aGVsbG8"
    assert sent.headers["accept"] == "image/webp"


def test_image_proxy_unreachable_is_502(client, test_settings) -> None:
    app.state.services.settings = test_settings.model_copy(update={"imgproxy_base_url": "http://down.test"})
    resp = client.get("/v1/image/sig/q:80/aGVsbG8")
    assert resp.status_code == 502


def test_video_upload_is_transcoded_and_served(client, repo, storage, queue, processor) -> None:
    ticket = _init(client)
    asset_id = ticket["assetId"]
    # the client PUTs the bytes to the presigned URL
    storage.objects[(ticket["bucket"], ticket["objectKey"])] = b"fake mp4 bytes"

    resp = client.post("/v1/media/complete", json={"assetId": asset_id})
    assert resp.json()["state"] == "processing"
    assert [(j.type, j.asset_id) for j in queue.jobs] == [("transcode", asset_id)]

    async def run_worker() -> None:
        pool = WorkerPool(queue, processor, concurrency=1, pop_timeout=0.01, tracker=repo)
        pool.start()
        for _ in range(300):
            if repo.assets[uuid.UUID(asset_id)].state == "ready":
                break
            await asyncio.sleep(0.01)
        await pool.stop()

    asyncio.run(run_worker())

    assert repo.assets[uuid.UUID(asset_id)].state == "ready"
    assert queue.items == []
    uploaded = {(bucket, key) for bucket, key, _ in storage.uploads}
    assert ("media-vod", f"{asset_id}/hls/master.m3u8") in uploaded
    for idx in range(4):
        assert ("media-vod", f"{asset_id}/hls/v{idx}/playlist.m3u8") in uploaded
    assert ("media-thumbs", f"{asset_id}/poster.jpg") in uploaded

    asset = client.get(f"/v1/media/{asset_id}").json()
    assert asset["state"] == "ready"
    assert asset["width"] == 1920
    assert asset["duration"] == 12.5
    assert asset["urls"] == {
        "hls": f"http://vod.test/{asset_id}/hls/master.m3u8",
        "poster": f"http://thumbs.test/{asset_id}/poster.jpg",
    }
