"""
Command line interface.

Usage:
    kms-envelope seal SRC DST
    kms-envelope unseal SRC DST
    kms-envelope compress-seal SRC DST
    kms-envelope unseal-decompress SRC DST
    kms-envelope put SRC --bucket BUCKET --key KEY
    kms-envelope get --bucket BUCKET --key KEY DST

Settings come from the environment or a .env file (see config.py). With
--local the master key lives in an in-memory key service for the lifetime
of the process only, so sealed output cannot be opened by a later run.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .compress import ZstdCompressor
from .config import Settings, load_settings
from .envelope import EnvelopeManager
from .errors import EnvelopeError
from .kms import InMemoryKeyService, KeyService, KmsManager
from .s3 import S3Manager
from .utils import configure_logging

logger = logging.getLogger(__name__)

LOCAL_KEY_ID = "local"

# sysexits EX_TEMPFAIL
EXIT_RETRYABLE = 75


async def _envelope_manager(args: argparse.Namespace, settings: Settings) -> EnvelopeManager:
    key_service: KeyService
    if args.local:
        key_id = args.key_id or settings.kms_key_id or LOCAL_KEY_ID
        key_service = InMemoryKeyService()
        await key_service.create_key(key_id)
    else:
        key_id = args.key_id or settings.require("kms_key_id")
        key_service = KmsManager.from_settings(settings)

    return EnvelopeManager(
        key_service,
        key_id,
        args.aad_tag or settings.aad_tag,
        compressor=ZstdCompressor(settings.zstd_level),
    )


async def _run(args: argparse.Namespace, settings: Settings) -> None:
    envelope = await _envelope_manager(args, settings)
    logger.debug("running %s with %r", args.cmd, envelope)

    if args.cmd == "seal":
        await envelope.seal_aes_256_file(args.src, args.dst)
    elif args.cmd == "unseal":
        await envelope.unseal_aes_256_file(args.src, args.dst)
    elif args.cmd == "compress-seal":
        await envelope.compress_seal(args.src, args.dst)
    elif args.cmd == "unseal-decompress":
        await envelope.unseal_decompress(args.src, args.dst)
    else:
        bucket = args.bucket or settings.require("s3_bucket")
        store = S3Manager.from_settings(settings)
        if args.cmd == "put":
            await store.compress_seal_put_object(envelope, args.src, bucket, args.key)
        else:
            await store.get_object_unseal_decompress(envelope, bucket, args.key, args.dst)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kms-envelope",
        description="Envelope encryption with KMS data keys and AES-256-GCM",
    )
    parser.add_argument("--env-file", help="Path to a .env file to load")
    parser.add_argument("-k", "--key-id", help="KMS key id, ARN or alias (default: KMS_KEY_ID)")
    parser.add_argument("--aad-tag", help="AAD tag bound to every payload (default: ENVELOPE_AAD_TAG)")
    parser.add_argument(
        "--local", action="store_true", help="Use a process-local in-memory key service"
    )
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    for name, help_text in (
        ("seal", "Envelope-encrypt a file"),
        ("unseal", "Envelope-decrypt a file"),
        ("compress-seal", "Compress a file with zstd, then envelope-encrypt it"),
        ("unseal-decompress", "Envelope-decrypt a file, then decompress it"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("src", help="Source file path")
        p.add_argument("dst", help="Destination file path")

    p_put = sub.add_parser("put", help="Compress, seal and upload a file to S3")
    p_put.add_argument("src", help="Source file path")
    p_put.add_argument("--bucket", help="S3 bucket (default: S3_BUCKET)")
    p_put.add_argument("--key", required=True, help="S3 object key")

    p_get = sub.add_parser("get", help="Download, unseal and decompress an S3 object")
    p_get.add_argument("--bucket", help="S3 bucket (default: S3_BUCKET)")
    p_get.add_argument("--key", required=True, help="S3 object key")
    p_get.add_argument("dst", help="Destination file path (must not exist)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the kms-envelope command."""
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.env_file)
        configure_logging(args.log_level or settings.log_level)
        asyncio.run(_run(args, settings))
    except EnvelopeError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_RETRYABLE if e.retryable else 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
