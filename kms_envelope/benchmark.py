"""
Envelope Encryption Benchmark CLI.

Usage:
    kms-envelope-benchmark [--sizes 1024,1048576] [--iterations 20]

Or run directly:
    python -m kms_envelope.benchmark

Runs against the in-memory key service, so the numbers measure the local
AES-256-GCM and framing work plus data key generation, not KMS latency.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import time
from typing import List, Optional, Tuple

from .envelope import EnvelopeManager, SealedEnvelope
from .kms import InMemoryKeyService
from .utils import human_bytes, read_file, scoped_tmp_path, write_file

DEFAULT_SIZES = (1024, 64 * 1024, 1024 * 1024, 16 * 1024 * 1024)
DEFAULT_ITERATIONS = 20


def _parse_sizes(raw: str) -> List[int]:
    try:
        sizes = [int(s) for s in raw.split(",") if s.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid size list {raw!r}")
    if not sizes or any(s < 0 for s in sizes):
        raise argparse.ArgumentTypeError(f"invalid size list {raw!r}")
    return sizes


def _rate(count: int, seconds: float) -> float:
    return count / seconds if seconds > 0 else float("inf")


async def _bench_size(
    envelope: EnvelopeManager, size: int, iterations: int
) -> Tuple[float, float]:
    plaintext = os.urandom(size)

    seal_start = time.perf_counter()
    sealed = b""
    for _ in range(iterations):
        sealed = await envelope.seal_aes_256(plaintext)
    seal_time = time.perf_counter() - seal_start

    unseal_start = time.perf_counter()
    for _ in range(iterations):
        decrypted = await envelope.unseal_aes_256(sealed)
    unseal_time = time.perf_counter() - unseal_start

    if decrypted != plaintext:
        raise RuntimeError(f"round-trip mismatch for {size}-byte payload")
    return seal_time, unseal_time


async def run_benchmark(sizes: List[int], iterations: int) -> None:
    """Run the envelope encryption benchmark."""
    print("=== Envelope Encryption Benchmark ===\n")

    key_service = InMemoryKeyService()
    key_id = await key_service.create_key()
    envelope = EnvelopeManager(key_service, key_id, "benchmark")
    print(f"Testing {len(sizes)} payload sizes x {iterations} iterations\n")

    print("=" * 70)
    print("                    BENCHMARK START")
    print("=" * 70 + "\n")

    # ========================================================================
    # Demo 1: Seal/unseal bytes
    # ========================================================================
    print("+" + "-" * 68 + "+")
    print("|  Demo 1: Seal/Unseal Throughput" + " " * 36 + "|")
    print("+" + "-" * 68 + "+")

    results = []
    for size in sizes:
        seal_time, unseal_time = await _bench_size(envelope, size, iterations)
        results.append((size, seal_time, unseal_time))
        print(
            f"  {human_bytes(size):>10}: seal {seal_time * 1000 / iterations:.3f}ms "
            f"({_rate(iterations, seal_time):.2f} ops/sec) | "
            f"unseal {unseal_time * 1000 / iterations:.3f}ms "
            f"({_rate(iterations, unseal_time):.2f} ops/sec)"
        )
    print()

    # ========================================================================
    # Demo 2: Envelope overhead
    # ========================================================================
    print("+" + "-" * 68 + "+")
    print("|  Demo 2: Envelope Overhead" + " " * 41 + "|")
    print("+" + "-" * 68 + "+")

    sealed = SealedEnvelope.from_bytes(await envelope.seal_aes_256(b""))
    print(f"[OK] Fixed overhead per envelope: {sealed.size} bytes")
    print(f"[DEBUG] Wrapped DEK: {len(sealed.wrapped_dek)} bytes\n")

    # ========================================================================
    # Demo 3: Compress + seal file pipeline
    # ========================================================================
    print("+" + "-" * 68 + "+")
    print("|  Demo 3: Compress-Seal File Pipeline" + " " * 31 + "|")
    print("+" + "-" * 68 + "+")

    largest = max(sizes) if sizes else 0
    async with scoped_tmp_path() as src, scoped_tmp_path() as sealed_path, scoped_tmp_path() as dst:
        await write_file(src, bytes([7]) * largest)

        pipeline_start = time.perf_counter()
        await envelope.compress_seal(src, sealed_path)
        await envelope.unseal_decompress(sealed_path, dst)
        pipeline_time = time.perf_counter() - pipeline_start

        if await read_file(dst) != bytes([7]) * largest:
            raise RuntimeError("compress-seal round-trip mismatch")

        print(
            f"[OK] {human_bytes(largest)} -> {human_bytes(os.path.getsize(sealed_path))} "
            f"sealed, restored byte-identical"
        )
        print(f"[PERF] Round trip: {pipeline_time * 1000:.3f}ms\n")

    # ========================================================================
    # Summary
    # ========================================================================
    print("=" * 70)
    print("                    BENCHMARK SUMMARY")
    print("=" * 70 + "\n")

    for size, seal_time, unseal_time in results:
        seal_rate = human_bytes(_rate(size * iterations, seal_time))
        unseal_rate = human_bytes(_rate(size * iterations, unseal_time))
        print(f"  {human_bytes(size):>10}: seal {seal_rate}/s | unseal {unseal_rate}/s")

    print("\nTest Configuration:")
    print("  - Crypto: AES-256-GCM with AEAD (AAD = tag)")
    print("  - Data keys: one fresh AES_256 DEK per seal")
    print("  - Key service: in-memory")

    print("\n" + "=" * 70)
    print("                    BENCHMARK COMPLETE")
    print("=" * 70 + "\n")


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for kms-envelope-benchmark command."""
    parser = argparse.ArgumentParser(prog="kms-envelope-benchmark")
    parser.add_argument(
        "--sizes",
        type=_parse_sizes,
        default=list(DEFAULT_SIZES),
        help="Comma-separated payload sizes in bytes",
    )
    parser.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    args = parser.parse_args(argv)
    asyncio.run(run_benchmark(args.sizes, max(1, args.iterations)))


if __name__ == "__main__":
    main()
