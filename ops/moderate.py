from __future__ import annotations

import argparse
import json
import os
import sys
import uuid
from typing import Any
import urllib.request
import urllib.error


DEFAULT_BASE_URL = os.getenv("MODERATION_BASE_URL", "http://localhost:8000")
DEFAULT_ADMIN_KEY = os.getenv("ADMIN_API_KEY", "")
DEFAULT_REVIEWER_ID = os.getenv("REVIEWER_ID", "")

DEFAULT_TIMEOUT_SECONDS = 30


def http_post(url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url=url,
        data=data,
        method="POST",
        headers={"Content-Type": "application/json", **headers},
    )
    try:
        with urllib.request.urlopen(req, timeout=DEFAULT_TIMEOUT_SECONDS) as resp:
            raw = resp.read().decode("utf-8")
            return json.loads(raw) if raw else {}
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        print(f"HTTP {e.code} {e.reason} for {url}", file=sys.stderr)
        if body:
            print(body, file=sys.stderr)
        return {"error": {"status": e.code, "reason": e.reason, "body": body}}
    except urllib.error.URLError as e:
        print(f"Network error for {url}: {e}", file=sys.stderr)
        return {"error": {"reason": str(e)}}


def _read_ids(args: argparse.Namespace) -> list[str]:
    ids = list(args.ids or [])
    if args.ids_file:
        with open(args.ids_file, "r", encoding="utf-8") as f:
            ids.extend(line.strip() for line in f if line.strip())
    return ids


def _decide(args: argparse.Namespace, base_url: str, headers: dict[str, str]) -> int:
    try:
        ids = _read_ids(args)
    except OSError as e:
        print(f"Failed to read ids file: {e}", file=sys.stderr)
        return 2
    if not ids:
        print("No listing ids given (use --ids or --ids-file)", file=sys.stderr)
        return 2
    if args.action == "REJECT" and not (args.reason or "").strip():
        print("REJECT needs --reason", file=sys.stderr)
        return 2

    body = {"listing_ids": ids, "action": args.action, "reason": args.reason, "featured": args.featured}
    # one key per invocation; rerun with --idempotency-key to replay safely
    key = args.idempotency_key or uuid.uuid4().hex
    resp = http_post(f"{base_url}/v1/admin/moderation/listings/decide", body, {**headers, "Idempotency-Key": key})
    print(json.dumps(resp, indent=2, ensure_ascii=False))
    if "error" in resp:
        return 1
    # partial success is still non-zero so scripts notice skips
    return 0 if not resp.get("skipped") else 3


def _review(args: argparse.Namespace, base_url: str, headers: dict[str, str]) -> int:
    if args.outcome == "REJECT" and not (args.reason or "").strip():
        print("REJECT needs --reason", file=sys.stderr)
        return 2
    body = {"outcome": args.outcome, "reason": args.reason}
    resp = http_post(f"{base_url}/v1/admin/verification/documents/{args.document_id}/review", body, headers)
    print(json.dumps(resp, indent=2, ensure_ascii=False))
    return 0 if "error" not in resp else 1


def main() -> int:
    p = argparse.ArgumentParser(description="Bulk moderation and document review against a running API.")
    p.add_argument("--base-url", default=DEFAULT_BASE_URL)
    p.add_argument("--admin-key", default=DEFAULT_ADMIN_KEY)
    p.add_argument("--reviewer-id", default=DEFAULT_REVIEWER_ID)
    sub = p.add_subparsers(dest="command", required=True)

    d = sub.add_parser("decide", help="approve or reject listings")
    d.add_argument("--action", choices=["APPROVE", "REJECT"], required=True)
    d.add_argument("--ids", nargs="*", help="listing ids")
    d.add_argument("--ids-file", help="file with one listing id per line")
    d.add_argument("--reason", help="required for REJECT; stored as notes on APPROVE")
    d.add_argument("--featured", action="store_true", help="feature approved listings")
    d.add_argument("--idempotency-key")

    r = sub.add_parser("review", help="review one verification document")
    r.add_argument("document_id")
    r.add_argument("--outcome", choices=["APPROVE", "REJECT"], required=True)
    r.add_argument("--reason")

    args = p.parse_args()

    if not args.admin_key:
        print("Missing ADMIN_API_KEY (env) or --admin-key", file=sys.stderr)
        return 2
    if not args.reviewer_id:
        print("Missing REVIEWER_ID (env) or --reviewer-id", file=sys.stderr)
        return 2

    base_url = args.base_url.rstrip("/")
    headers = {"X-Admin-Key": args.admin_key, "X-Reviewer-Id": args.reviewer_id}

    if args.command == "decide":
        return _decide(args, base_url, headers)
    return _review(args, base_url, headers)


if __name__ == "__main__":
    raise SystemExit(main())
