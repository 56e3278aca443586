"""
PII Vault Benchmark CLI.

Usage:
    pii-vault-benchmark [--rows N] [--mock]

Or run directly:
    python -m pii_vault.benchmark

Vault setup:
    1. Enable transit: vault secrets enable transit
    2. Set PII_VAULT_URL / PII_VAULT_TOKEN in the environment or a .env file
    3. Or pass --mock to run against the in-memory backend
"""

from __future__ import annotations

import argparse
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pii_vault.config import VaultSettings
from pii_vault.engine import SHREDDED, EnvelopeEngine, key_id_from_int
from pii_vault.errors import ConfigError

DEFAULT_ROWS = 125
MOCK_ADDRESS = "mock://localhost"


@dataclass
class BenchmarkResult:
    """Outcome of a benchmark run."""

    rows: int
    sealed: int
    opened_cold: int
    opened_warm: int
    resealed: int
    shredded: int
    shredded_verified: int


def _banner(title: str) -> None:
    print("+" + "-" * 68 + "+")
    print(f"|  {title}" + " " * max(0, 66 - len(title)) + "|")
    print("+" + "-" * 68 + "+")


def _rate(count: int, seconds: float) -> str:
    return f"{count / seconds:.2f}" if seconds > 0 else "inf"


def run_benchmark(engine: EnvelopeEngine, rows: int = DEFAULT_ROWS) -> BenchmarkResult:
    """Run the envelope benchmark against an engine."""
    print("=" * 70)
    print("                    BENCHMARK START")
    print("=" * 70 + "\n")

    # ========================================================================
    # Demo 1: Seal one value per row, each under its own key id
    # ========================================================================
    _banner(f"Demo 1: Seal {rows} Rows (one key per row)")

    key_ids = [key_id_from_int(i + 1) for i in range(rows)]
    plaintexts = [f"row {i + 1} secret data".encode("utf-8") for i in range(rows)]
    stored: List[bytes] = []

    demo1_start = time.perf_counter()
    for i, (key_id, plaintext) in enumerate(zip(key_ids, plaintexts)):
        stored.append(engine.raw_bytes(engine.seal_new(plaintext, key_id)))
        if (i + 1) % 25 == 0 or (i + 1) == rows:
            print(f"  Progress: {i + 1}/{rows}")
    demo1_duration = time.perf_counter() - demo1_start
    sealed_count = len(stored)

    print(f"[OK] Sealed {rows} rows")
    print(f"[PERF] Time: {demo1_duration * 1000:.3f}ms | Rate: {_rate(rows, demo1_duration)} ops/sec\n")

    # ========================================================================
    # Demo 2: Open everything, cold cache then warm cache
    # ========================================================================
    _banner("Demo 2: Open Rows (cold cache, then warm cache)")

    engine.cache.clear()
    cold_start = time.perf_counter()
    opened_cold = sum(
        1 for blob, expected in zip(stored, plaintexts)
        if engine.open_to_plaintext(blob) == expected
    )
    cold_duration = time.perf_counter() - cold_start

    warm_start = time.perf_counter()
    opened_warm = sum(
        1 for blob, expected in zip(stored, plaintexts)
        if engine.open_to_plaintext(blob) == expected
    )
    warm_duration = time.perf_counter() - warm_start

    print(f"[OK] Opened {opened_cold}/{rows} cold, {opened_warm}/{rows} warm")
    print(f"[PERF] Cold: {cold_duration * 1000:.3f}ms ({_rate(rows, cold_duration)} ops/sec)")
    print(f"[PERF] Warm: {warm_duration * 1000:.3f}ms ({_rate(rows, warm_duration)} ops/sec)\n")

    # ========================================================================
    # Demo 3: Concurrent reads of one hot row
    # ========================================================================
    _banner("Demo 3: Concurrent Reads (8 threads, one hot key)")

    engine.cache.invalidate(key_ids[0])
    before = engine.cache.stats()
    demo3_start = time.perf_counter()
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(engine.open_to_plaintext, [stored[0]] * 64))
    demo3_duration = time.perf_counter() - demo3_start
    after = engine.cache.stats()

    print(f"[OK] {sum(1 for r in results if r == plaintexts[0])}/64 reads returned the plaintext")
    print(f"[DEBUG] Backend fetches: {after.misses - before.misses}, coalesced waiters: {after.coalesced - before.coalesced}")
    print(f"[PERF] Time: {demo3_duration * 1000:.3f}ms\n")

    # ========================================================================
    # Demo 4: Re-encrypt under new key ids
    # ========================================================================
    _banner("Demo 4: Re-encryption (key rotation)")

    demo4_start = time.perf_counter()
    stored = [
        engine.raw_bytes(engine.seal_existing(blob, key_id_from_int(rows + i + 1)))
        for i, blob in enumerate(stored)
    ]
    demo4_duration = time.perf_counter() - demo4_start

    print(f"[OK] Re-sealed {len(stored)} rows under new key ids")
    print(f"[PERF] Time: {demo4_duration * 1000:.3f}ms | Rate: {_rate(len(stored), demo4_duration)} ops/sec\n")

    # ========================================================================
    # Demo 5: Crypto shredding
    # ========================================================================
    _banner("Demo 5: Crypto Shredding")

    shred_count = max(1, rows // 5)
    demo5_start = time.perf_counter()
    for i in range(shred_count):
        engine.shred(key_id_from_int(rows + i + 1))
    demo5_duration = time.perf_counter() - demo5_start

    shredded_verified = sum(
        1 for blob in stored[:shred_count] if engine.open_to_plaintext(blob) is SHREDDED
    )
    print(f"[OK] Shredded {shred_count} keys, {shredded_verified} rows now read as {engine.open_to_text(stored[0])}")
    print(f"[PERF] Time: {demo5_duration * 1000:.3f}ms | Rate: {_rate(shred_count, demo5_duration)} ops/sec\n")

    # ========================================================================
    # Summary
    # ========================================================================
    print("=" * 70)
    print("                    BENCHMARK SUMMARY")
    print("=" * 70 + "\n")

    print(f"Cache Statistics: {engine.cache.stats()}")
    print("\nTest Configuration:")
    print(f"  - Rows tested: {rows}")
    print(f"  - Backend: {type(engine.backend).__name__}")
    print(f"  - Cache TTL: {engine.cache.ttl_seconds:g}s")
    print("  - Crypto: AES-256-GCM, AAD bound to key id")

    print("\n" + "=" * 70)
    print("                    BENCHMARK COMPLETE")
    print("=" * 70 + "\n")

    return BenchmarkResult(
        rows=rows,
        sealed=sealed_count,
        opened_cold=opened_cold,
        opened_warm=opened_warm,
        resealed=len(stored),
        shredded=shred_count,
        shredded_verified=shredded_verified,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for the pii-vault-benchmark command."""
    parser = argparse.ArgumentParser(description="PII vault envelope benchmark")
    parser.add_argument("--rows", type=int, default=DEFAULT_ROWS, help="rows to seal (default: 125)")
    parser.add_argument("--mock", action="store_true", help="use the in-memory key backend")
    args = parser.parse_args(argv)

    print("=== PII Vault Benchmark ===\n")

    if args.rows < 1:
        print("ERROR: --rows must be at least 1")
        return 1

    try:
        if args.mock:
            settings = VaultSettings.build(backend_address=MOCK_ADDRESS)
        else:
            settings = VaultSettings.from_env()
    except ConfigError as e:
        print(f"ERROR: {e}")
        print("Set PII_VAULT_URL (and PII_VAULT_TOKEN) in the environment or .env, or pass --mock")
        return 1

    engine = EnvelopeEngine.from_settings(settings)
    try:
        run_benchmark(engine, args.rows)
    finally:
        engine.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
