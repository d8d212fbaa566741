#!/usr/bin/env python3
"""
Example script demonstrating ipset-manager as a library.

This script shows how to:
1. Store records in a snapshot backend
2. Import an ipset save dump
3. Search and aggregate sets
4. Render restore text and preview applying it

Usage:
    python example.py
"""

import asyncio
import tempfile
from pathlib import Path

from ipset_manager import (
    Record,
    RecordPatch,
    SnapshotRecordStore,
    generate,
    generate_script,
    parse,
)
from ipset_manager.devices import LinuxIpset
from ipset_manager.importer import ImportEngine

SAVED_RULES = """\
create web_tcp hash:ip,port family inet hashsize 1024 maxelem 65536
add web_tcp 192.168.100.10,tcp:443
add web_tcp 192.168.100.11,tcp:443
create blocklist hash:net family inet
add blocklist 203.0.113.0/24
"""


async def main():
    print("ipset-manager - Library Example")
    print("=" * 50)

    workdir = Path(tempfile.mkdtemp(prefix="ipset-manager-"))
    store = SnapshotRecordStore(workdir / "records.json")

    # 1. Create a record by hand
    print("\n📋 Creating a record...")
    ssh = store.create(
        Record(
            set_name="mgmt_tcp",
            ip="10.0.0.0",
            cidr="24",
            port=22,
            protocol="tcp",
            context="ssh-from-management",
            description="SSH access from management network",
        )
    )
    print(f"✓ Created record {ssh.id}: {ssh.entry}")

    store.update(ssh.id, RecordPatch(description="SSH from the jump hosts"))
    print(f"✓ Updated description of {ssh.id}")

    # 2. Import a save dump
    print("\n📥 Importing saved rules...")
    report = ImportEngine(store).import_records(
        parse(SAVED_RULES, "example"), context_prefix="imported"
    )
    print(f"✓ {report.summary()}")

    # 3. Search and aggregate
    print("\n🔍 Searching for 'web'...")
    for record in store.search("web"):
        print(f"  {record}")

    print("\n📦 Sets:")
    for ipset in store.get_all_sets():
        print(f"  {ipset.name:<10} {ipset.type:<14} {ipset.record_count} records")

    # 4. Render and preview
    print("\n🔧 Restore text:")
    print("-" * 60)
    restore_text = generate(store.get_all())
    print(restore_text)

    script_path = workdir / "ipsets.sh"
    script_path.write_text(generate_script(store.get_all()))
    print(f"✓ Script written to {script_path}")

    device = LinuxIpset()
    result = await device.restore(restore_text, dry_run=True)
    print(f"\n⚡ {result.output.splitlines()[0]}")

    print(f"\n✓ Records kept in {store.path}")


if __name__ == "__main__":
    asyncio.run(main())
