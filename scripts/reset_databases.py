#!/usr/bin/env python3
"""Reset the PostgreSQL memory document table.

This script drops the table holding every memory collection and recreates it
with the current schema. All stored memories and settings are lost.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.chatmemory.core import MemoryConfig
from src.chatmemory.memory.storage import PostgresDocumentStore, PostgresConfig


async def reset_postgres(config: PostgresConfig) -> bool:
    """Drop and recreate the memory document table."""
    print("\n=== Resetting PostgreSQL ===")
    print(f"Connecting to PostgreSQL at {config.host}:{config.port}/{config.database}...")

    store = PostgresDocumentStore(config)
    try:
        # connect() creates the table, so drop and connect again for a clean schema
        await store.connect()
        print(f"  Dropping table {config.table}...")
        await store.drop()
        await store.disconnect()

        print(f"  Creating table {config.table}...")
        await store.connect()
        await store.disconnect()

        print("✓ PostgreSQL reset complete")
        return True

    except Exception as e:
        print(f"✗ PostgreSQL reset failed: {e}")
        return False


async def main():
    config = MemoryConfig.from_env().postgres_config

    print("=" * 60)
    print("Memory Store Reset Script")
    print("=" * 60)
    print(f"\nThis will DELETE ALL DATA in {config.database}.{config.table}!")
    print("Press Ctrl+C within 3 seconds to cancel...")

    try:
        await asyncio.sleep(3)
    except KeyboardInterrupt:
        print("\nCancelled.")
        return

    ok = await reset_postgres(config)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nCancelled.")
