#!/usr/bin/env python3
"""Serve the Lambda handler over plain HTTP for local frontend development.

Usage:
  JWT_SECRET=dev S3_BUCKET_NAME=<bucket> python scripts/serve_local.py [--port 3001]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Dict
from urllib.parse import parse_qsl, urlparse

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.runtime import lambda_handler  # noqa: E402

logger = logging.getLogger("serve_local")


def build_event(method: str, raw_path: str, headers: Dict[str, str], body: str | None) -> Dict[str, Any]:
    """Translate an HTTP request into an API Gateway HTTP API (v2) event."""
    parsed = urlparse(raw_path)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    return {
        "rawPath": parsed.path or "/",
        "rawQueryString": parsed.query,
        "queryStringParameters": query or None,
        "headers": {key.lower(): value for key, value in headers.items()},
        "requestContext": {"http": {"method": method}, "stage": "$default"},
        "body": body,
    }


class LambdaProxyHandler(BaseHTTPRequestHandler):
    """Forward every request to ``lambda_handler`` and write back its response."""

    def _dispatch(self) -> None:
        length = int(self.headers.get("Content-Length", "0") or 0)
        body = self.rfile.read(length).decode("utf-8") if length else None
        event = build_event(self.command, self.path, dict(self.headers.items()), body)

        response = lambda_handler(event, None)
        payload = str(response.get("body", "")).encode("utf-8")
        self.send_response(int(response.get("statusCode", 500)))
        for key, value in (response.get("headers") or {}).items():
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if payload and self.command != "HEAD":
            self.wfile.write(payload)

    do_GET = _dispatch  # noqa: N815
    do_POST = _dispatch  # noqa: N815
    do_PUT = _dispatch  # noqa: N815
    do_PATCH = _dispatch  # noqa: N815
    do_DELETE = _dispatch  # noqa: N815
    do_OPTIONS = _dispatch  # noqa: N815

    def log_message(self, fmt: str, *args: object) -> None:
        logger.info("%s %s", self.address_string(), fmt % args)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=3001)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    server = ThreadingHTTPServer((args.host, args.port), LambdaProxyHandler)
    print(json.dumps({"status": "listening", "url": f"http://{args.host}:{args.port}"}))
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
