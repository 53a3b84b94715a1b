"""CLI helper for signing resolver paths and fetching thumbnails."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx

from ..common.security import sign_path


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sign a pixcache request path")
    parser.add_argument("size", help="Size token, e.g. thumb")
    parser.add_argument("source", help="Source reference: a store key or an http(s) URL")
    parser.add_argument(
        "--secret",
        default=os.environ.get("PIXCACHE_SIGNING_SECRET"),
        help="Signing secret (defaults to PIXCACHE_SIGNING_SECRET)",
    )
    parser.add_argument("--base-url", help="Resolver base URL; when set the thumbnail is fetched")
    parser.add_argument("--output", type=Path, help="Write the fetched thumbnail to this file")
    return parser.parse_args(argv)


def build_path(size: str, source: str) -> str:
    """Escape ``source`` the way the resolver sees it on the wire."""

    return f"/{quote(size, safe='')}/{quote(source, safe='/')}"


async def fetch_thumbnail(base_url: str, path: str, signature: str) -> httpx.Response:
    async with httpx.AsyncClient(timeout=30.0) as client:
        return await client.get(f"{base_url.rstrip('/')}{path}", headers={"Signature": signature})


async def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    if not args.secret:
        print("A signing secret is required (--secret or PIXCACHE_SIGNING_SECRET)", file=sys.stderr)
        return 2

    path = build_path(args.size, args.source)
    signature = sign_path(path, args.secret)
    if not args.base_url:
        print(f"{path}\nSignature: {signature}")
        return 0

    response = await fetch_thumbnail(args.base_url, path, signature)
    if response.status_code != 200:
        print(f"Resolver returned {response.status_code}: {response.text}", file=sys.stderr)
        return 1
    if args.output:
        args.output.write_bytes(response.content)
        print(f"Wrote {len(response.content)} bytes ({response.headers.get('content-type')}) to {args.output}")
    else:
        print(f"ETag: {response.headers.get('etag')} Content-Length: {response.headers.get('content-length')}")
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
