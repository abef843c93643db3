#!/usr/bin/env python3
"""Upload a USDZ to a running server and poll until its export settles."""

import argparse
from pathlib import Path
import sys
import time

import httpx

BASE_URL = "http://127.0.0.1:8000"


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("usdz", type=Path)
    parser.add_argument("--metadata", type=Path, default=None, help="RoomPlan JSON sidecar")
    parser.add_argument("--user-id", default=None)
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--timeout", type=float, default=120.0)
    args = parser.parse_args()

    client = httpx.Client(base_url=args.base_url, timeout=30.0)

    files = {"file": (args.usdz.name, args.usdz.read_bytes(), "model/vnd.usdz+zip")}
    if args.metadata:
        files["metadata"] = (args.metadata.name, args.metadata.read_bytes(), "application/json")
    data = {"user_id": args.user_id} if args.user_id else {}

    resp = client.post("/v1/uploads/usdz", files=files, data=data)
    if resp.status_code != 202:
        print(f"Upload failed: {resp.status_code} {resp.text}", file=sys.stderr)
        sys.exit(1)
    export_id = resp.json()["export_id"]
    print(f"EXPORT_ID={export_id}")

    deadline = time.monotonic() + args.timeout
    while time.monotonic() < deadline:
        export = client.get(f"/v1/exports/{export_id}").json()
        if export["status"] in {"ready", "failed"}:
            break
        time.sleep(1.0)
    else:
        print(f"Export still {export['status']} after {args.timeout}s", file=sys.stderr)
        sys.exit(2)

    print(f"STATUS={export['status']}")
    if export["status"] == "failed":
        print(f"ERROR={export['error']}")
        sys.exit(1)
    print(f"GLB_PATH={export['glb_path']}")
    print(f"GLB_URL={export['glb_signed_url'] or export['glb_public_url']}")


if __name__ == "__main__":
    main()
