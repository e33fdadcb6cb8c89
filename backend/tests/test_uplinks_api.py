import base64
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sentinel.deps import get_decoder
from sentinel.main import app
from sentinel.pipeline import UplinkDecoder
from sentinel.simulation.frame_encode import (
    FftZoomSpec,
    build_frame,
    extension_block,
    split_into_segments,
    system_status_vector,
    to_hex,
)

DEVICE = "70b3d5c1a0000007"


@pytest.fixture
def client():
    decoder = UplinkDecoder()
    app.dependency_overrides[get_decoder] = lambda: decoder
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_decode_canonical_uplink(client):
    r = client.post("/api/uplinks", json={"deviceId": DEVICE, "bytes": "000000", "elementCount": 1})

    assert r.status_code == 200
    body = r.json()
    assert body["errors"] == [] and body["warnings"] == []
    assert body["data"]["scalarValues"] == [
        {"name": "Battery level", "unit": "Volt", "value": 0.0, "min": 0.0, "max": 100.0}
    ]


def test_decoding_errors_are_reported_in_body(client):
    r = client.post("/api/uplinks", json={"deviceId": DEVICE, "bytes": "0000", "elementCount": 1})

    assert r.status_code == 200
    assert r.json()["errors"] == ["Inconsistent number of elements in frame (1) and frame length (2)"]


def test_rejects_non_hex_payload(client):
    r = client.post("/api/uplinks", json={"deviceId": DEVICE, "bytes": "xyz", "elementCount": 1})

    assert r.status_code == 422


def test_network_envelope(client):
    r = client.post("/api/uplinks/chirpstack", json={
        "deviceInfo": {"devEui": DEVICE},
        "fPort": 1,
        "data": base64.b64encode(b"\x02\x00\x00").decode(),
    })

    assert r.status_code == 200
    assert r.json()["data"]["scalarValues"][0]["name"] == "Humidity"


def test_useless_network_frame(client):
    r = client.post("/api/uplinks/loriot", json={"cmd": "rx", "EUI": DEVICE, "port": 0, "data": ""})

    assert r.status_code == 202
    assert r.json()["warnings"] == ["Frame not to be processed"]


@pytest.mark.parametrize("network, message", [("chirpstack", {"fPort": 1}), ("ttn", {})])
def test_adapter_failures(client, network, message):
    assert client.post(f"/api/uplinks/{network}", json=message).status_code == 422


def test_extension_settings_lookup(client):
    assert client.get(f"/api/devices/{DEVICE}/extension-settings").status_code == 404

    fft = FftZoomSpec(2000, 100, 0, 1, 5000)
    payload, count = build_frame([], system_status_vector(extension=extension_block(4, fft=fft)))
    posted = client.post("/api/uplinks", json={"deviceId": DEVICE, "bytes": to_hex(payload), "elementCount": count})
    assert posted.json()["data"]["extensionSettings"]["handle"] == 4

    r = client.get(f"/api/devices/{DEVICE}/extension-settings")
    assert r.status_code == 200
    assert r.json()["deviceId"] == DEVICE
    assert r.json()["settings"]["cutOffFrequency"] == 5000


def test_downlink_encoding_not_implemented(client):
    r = client.post("/api/downlinks/encode", json={"anything": True})

    assert r.status_code == 501
    assert r.json()["errors"] == ["Not yet implemented"]


def _post_segment(client, port, chunk, received_at=None):
    body = {"deviceId": DEVICE, "bytes": to_hex(chunk), "elementCount": port}
    if received_at is not None:
        body["receivedAt"] = received_at
    r = client.post("/api/uplinks", json=body)
    assert r.status_code == 200
    return r.json()


def _segments():
    payload, count = build_frame([], system_status_vector())
    return split_into_segments(payload, count, chunk_size=20)


def test_repeated_segment_without_timestamp_after_naive_ones(client):
    segments = _segments()
    _post_segment(client, *segments[0], received_at="2026-10-19T12:00:00")
    _post_segment(client, *segments[1], received_at="2026-10-19T12:00:01")
    body = _post_segment(client, *segments[1])

    assert body["errors"] == []
    assert body["warnings"] == ["This is not a duplicate frame segment, frame segments have been lost"]


def test_naive_and_aware_timestamps_compare_as_utc(client):
    segments = _segments()
    _post_segment(client, *segments[0], received_at="2026-10-19T12:00:00")
    _post_segment(client, *segments[1], received_at="2026-10-19T12:00:01")
    body = _post_segment(client, *segments[1], received_at="2026-10-19T12:00:01.500Z")

    assert body["errors"] == []
    assert body["warnings"] == ["This is a duplicate frame segment, just ignore it"]


def test_settings_table_created_on_startup(monkeypatch):
    import dataclasses

    from sentinel import db, main

    created = []

    async def fake_create_tables():
        created.append(True)

    monkeypatch.setattr(main, "settings", dataclasses.replace(main.settings, settings_store="sql", create_tables=True))
    monkeypatch.setattr(db, "create_tables", fake_create_tables)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200

    assert created == [True]
