import json

import pytest
from fastapi.testclient import TestClient

from quotagate.main import HANDLERS, create_app
from tests.conftest import SUDO_KEY


@pytest.fixture
def client(gateway):
    with TestClient(create_app(gateway)) as client:
        yield client


def call(client, type_, args=None, *, body=None, headers=None):
    hdrs = {"X-Type": type_}
    if body is not None:
        hdrs["X-Json-Body"] = json.dumps(args)
        content = body
    else:
        content = json.dumps(args).encode() if args is not None else b""
    hdrs.update(headers or {})
    return client.post("/api", content=content, headers=hdrs)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_dispatch_table_covers_every_operation():
    assert set(HANDLERS) == {
        "Upload",
        "Delete",
        "CreateKey",
        "DeleteKey",
        "CreatePartition",
        "DeletePartition",
        "SweepPartition",
    }


def test_missing_and_unknown_type(client):
    resp = client.post("/api", content=b"{}")
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_type"

    resp = call(client, "resolvePartitions", {})
    assert resp.status_code == 400
    assert resp.json() == {"code": "invalid_type", "message": "Invalid type"}


def test_invalid_json(client):
    resp = client.post("/api", content=b"{nope", headers={"X-Type": "CreateKey"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_json"

    resp = call(client, "CreateKey", {"partitions": ["a"]})
    assert resp.json()["code"] == "invalid_json"


def test_full_lifecycle(client, blobs):
    resp = call(
        client,
        "CreatePartition",
        {"sudo_key": SUDO_KEY, "name": "docs", "rule_set": "prefix=docs/,max-size=10b"},
    )
    assert resp.status_code == 204
    assert resp.headers["cache-control"] == "no-cache"
    assert resp.headers["access-control-allow-origin"] == "*"

    resp = call(client, "CreateKey", {"sudo_key": SUDO_KEY, "partitions": ["docs"]})
    assert resp.status_code == 200
    key = resp.json()["key"]

    resp = call(
        client,
        "Upload",
        {"key": key, "partition": "docs", "relative_path": "readme.txt"},
        body=b"hello",
        headers={"Content-Type": "text/plain"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"size": 5}
    assert blobs.objects["docs/readme.txt"] == (b"hello", "text/plain", "public-read")

    resp = call(
        client,
        "Upload",
        {"key": key, "partition": "docs", "relative_path": "big.txt"},
        body=b"x" * 6,
    )
    assert resp.status_code == 413
    assert resp.json()["code"] == "too_large"

    resp = call(client, "Delete", {"key": key, "partition": "docs", "relative_path": "readme.txt"})
    assert resp.status_code == 204
    assert blobs.objects == {}

    resp = call(client, "Delete", {"key": key, "partition": "docs", "relative_path": "readme.txt"})
    assert resp.status_code == 404
    assert resp.json()["code"] == "invalid_path"

    resp = call(client, "DeletePartition", {"sudo_key": SUDO_KEY, "name": "docs"})
    assert resp.status_code == 200
    assert resp.json() == {"partition": "docs", "deleted": 0, "failed": 0}

    resp = call(client, "DeletePartition", {"sudo_key": SUDO_KEY, "name": "docs"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_partition"


def test_upload_requires_json_header(client):
    resp = client.post("/api", content=b"file", headers={"X-Type": "Upload"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_headers"


def test_upload_with_unknown_key(client):
    resp = call(client, "Upload", {"key": "nope", "partition": "docs"}, body=b"abc")
    assert resp.status_code == 404
    assert resp.json() == {"code": "invalid_key", "message": "Invalid key"}


def test_validation_reason_reaches_client(client, make_partition, registry):
    make_partition("photos", validates="png")
    key = registry.create_key(["photos"])

    resp = call(client, "Upload", {"key": key, "partition": "photos"}, body=b"not a png")

    assert resp.status_code == 400
    assert resp.json() == {
        "code": "validation_failed",
        "message": "The image specified is not a png",
    }


def test_create_partition_with_bad_rule_set(client):
    resp = call(
        client,
        "CreatePartition",
        {"sudo_key": SUDO_KEY, "name": "p", "rule_set": "prefix=p/,ensure=gif"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_rule_set"


def test_admin_call_with_wrong_sudo_key(client):
    resp = call(client, "CreateKey", {"sudo_key": "guess", "partitions": ["a"]})
    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_key"


def test_backend_failure_is_opaque(client, make_partition, registry, blobs):
    make_partition("docs")
    key = registry.create_key(["docs"])
    blobs.fail_put = True

    resp = call(client, "Upload", {"key": key, "partition": "docs"}, body=b"abc")

    assert resp.status_code == 500
    assert resp.json() == {"code": "internal_server_error", "message": "Internal Server Error"}


def test_sweep_of_live_partition_is_refused(client, make_partition):
    make_partition("docs")

    resp = call(client, "SweepPartition", {"sudo_key": SUDO_KEY, "name": "docs"})

    assert resp.status_code == 400
    assert resp.json()["code"] == "partition_exists"
