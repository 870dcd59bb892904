#!/usr/bin/env python3
"""
Reset the document numbering of one document type for one year.

All allocated numbers of (type, year) are DELETED and numbering restarts at
the policy start number. Documents that already carry those numbers keep
them, so the next allocations will reuse printed numbers.

WARNING: this deletes data. Back up the database first.

Usage:
    python scripts/reset_numbering.py INVOICE 2026 --dry-run   # show what would be deleted
    python scripts/reset_numbering.py INVOICE 2026 --confirm   # really delete
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add the project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.core.config import settings
from src.core.database.session import async_session
from src.core.documents import NumberAuthority
from src.core.documents.policy_store import parse_document_type
from src.core.exceptions import AppException


async def show_state(authority: NumberAuthority, document_type, year: int) -> int:
    async with async_session() as session:
        count = await authority.persistence.count(session, document_type, year)
    policy = await authority.policies.get_policy(document_type)
    print(f"\n📊 {document_type.value} / {year}")
    print(f"  - allocated numbers: {count}")
    print(f"  - start number: {policy.start_number}")
    print(f"  - reset period: {policy.reset_period.value}")
    print(f"  - next number now: {await authority.preview_next(document_type, year)}")
    return count


async def main():
    parser = argparse.ArgumentParser(description="Reset document numbering for a type and year")
    parser.add_argument("document_type", help="INVOICE, QUOTE, DELIVERY, RETURN, SALES_JOURNAL, PURCHASE_ORDER")
    parser.add_argument("year", type=int)
    parser.add_argument("--dry-run", action="store_true", help="Show what would be deleted")
    parser.add_argument("--confirm", action="store_true", help="Really delete")
    parser.add_argument("--actor", default="reset_numbering.py", help="Name written to the audit log")
    args = parser.parse_args()

    if not args.dry_run and not args.confirm:
        print("❌ ERROR: pass --dry-run or --confirm")
        sys.exit(1)

    try:
        document_type = parse_document_type(args.document_type)
    except AppException as e:
        print(f"❌ {e.message}")
        sys.exit(1)

    print("\n" + "=" * 70)
    print("RESET DOCUMENT NUMBERING")
    print("=" * 70)
    print(f"\n🌍 Environment: {settings.app_env}")
    print(f"🗄️  Database: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'unknown'}")
    print(f"🔧 Mode: {'DRY-RUN' if args.dry_run else 'EXECUTE'}")

    authority = NumberAuthority(async_session)
    count = await show_state(authority, document_type, args.year)

    if args.dry_run:
        print(f"\n🔍 DRY-RUN: {count} number(s) would be deleted, nothing changed")
        print("\n💡 Run with --confirm to execute")
        return

    expected = f"RESET {document_type.value} {args.year}"
    response = input(f"\n❓ Type '{expected}' to continue: ")
    if response != expected:
        print("\n❌ Cancelled")
        sys.exit(0)

    try:
        result = await authority.reset_sequence(document_type, args.year, actor=args.actor)
    except AppException as e:
        print(f"\n❌ Reset failed: {e.message}")
        sys.exit(1)

    print(f"\n✅ Deleted {result.deleted} number(s); next number is {result.next_number}")


if __name__ == "__main__":
    asyncio.run(main())
