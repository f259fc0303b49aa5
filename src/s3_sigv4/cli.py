#!/usr/bin/env python3
"""Print a presigned URL for an object.

Usage:
    s3-sigv4-presign GET my-bucket path/to/key --expires 3600

Environment Variables:
    S3_ENDPOINT         - S3 endpoint URL (default: regional AWS endpoint)
    S3_REGION           - Signing region (default: AWS_REGION or us-east-1)
    S3_ADDRESSING_STYLE - path or virtual
    MINIO_ACCESS_KEY / MINIO_SECRET_KEY, or AWS_ACCESS_KEY_ID /
    AWS_SECRET_ACCESS_KEY - credentials; a boto3 profile is used otherwise
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from s3_sigv4.client import S3Client
from s3_sigv4.errors import S3SigV4Error
from s3_sigv4.presign import DEFAULT_EXPIRES
from s3_sigv4.utils import check_bucket_name


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate an AWS Signature V4 presigned URL"
    )
    parser.add_argument("method", choices=["GET", "PUT", "HEAD", "DELETE"], type=str.upper)
    parser.add_argument("bucket")
    parser.add_argument("key")
    parser.add_argument(
        "--expires", "-e",
        type=int,
        default=DEFAULT_EXPIRES,
        help=f"Validity in seconds, 1 to {DEFAULT_EXPIRES} (default: {DEFAULT_EXPIRES})",
    )
    parser.add_argument("--version-id", help="Object version to address")
    parser.add_argument("--profile", help="boto3 profile used when no env credentials are set")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log signing details to stderr",
    )
    return parser


async def _presign(args: argparse.Namespace) -> str:
    client = S3Client.from_env(profile_name=args.profile)
    async with client:
        extra = {"versionId": args.version_id} if args.version_id else None
        presigned = await client.presigner.presign(
            args.method,
            args.bucket,
            args.key,
            expires_seconds=args.expires,
            extra_query=extra,
        )
    return presigned.url


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        check_bucket_name(args.bucket)
        url = asyncio.run(_presign(args))
    except (S3SigV4Error, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
