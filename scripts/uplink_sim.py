import os, random, sys, time
from pathlib import Path

import requests

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "backend"))

from sentinel.physical_values import HUMIDITY_IDENTIFIER, TEMPERATURE_IDENTIFIER
from sentinel.simulation.frame_encode import (
    FftZoomSpec,
    build_frame,
    encode_scalar,
    extension_block,
    fft_zoom_vector,
    signature_vector,
    split_into_segments,
    system_status_vector,
    to_hex,
)

API = os.getenv("API", "http://localhost:8000")
DEVICE_ID = os.getenv("DEVICE_ID", "70b3d5c1a0000001")
HANDLE = int(os.getenv("EXTENSION_HANDLE", "7"))

def post(payload: bytes, element_count: int):
    r = requests.post(f"{API}/api/uplinks", json={
        "deviceId": DEVICE_ID, "bytes": to_hex(payload), "elementCount": element_count,
    })
    print(element_count, r.status_code, r.json())

def announce_settings():
    fft = FftZoomSpec(upper_frequency=2000, lower_frequency=100, compression_type=0, spectrum_type=1, cut_off_frequency=5000)
    post(*build_frame([], system_status_vector(extension=extension_block(HANDLE, fft=fft))))

def main():
    announce_settings()
    while True:
        temp = round(22.0 + random.uniform(-1.0, 1.0), 2)
        rh = round(45.0 + random.uniform(-5.0, 5.0), 1)
        scalars = [encode_scalar(TEMPERATURE_IDENTIFIER, temp), encode_scalar(HUMIDITY_IDENTIFIER, rh)]
        post(*build_frame(scalars, signature_vector(random.randint(0, 65535) for _ in range(46))))

        payload, count = build_frame([], fft_zoom_vector((random.randint(0, 255) for _ in range(50)), HANDLE))
        for port, chunk in split_into_segments(payload, count):
            post(chunk, port)
        time.sleep(5)

if __name__ == "__main__":
    main()
