#!/usr/bin/env python3
"""
Check and repair document numbering.

Duplicate numbers are removed (the earliest row is kept) and the cached
next number is resynchronised. Gaps are only reported.

Usage:
    python scripts/repair_numbering.py --dry-run            # diagnose every type
    python scripts/repair_numbering.py INVOICE --confirm    # repair one type
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add the project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.core.database.session import async_session
from src.core.documents import DiagnosticReport, DocumentType, NumberAuthority
from src.core.documents.policy_store import parse_document_type
from src.core.exceptions import AppException


def print_report(report: DiagnosticReport) -> None:
    status = "clean" if report.is_clean else f"{len(report.issues)} issue(s)"
    print(f"\n📋 {report.document_type.value}: {status}")
    for issue in report.issues:
        print(f"  ❌ [{issue.kind}] {issue.message}")
    for notice in report.notices:
        print(f"  ℹ️  [{notice.kind}] {notice.message}")
    if not report.dry_run:
        print(f"  rows removed: {len(report.removed_row_ids)}, cache resynced: {report.cache_resynced}")


async def main():
    parser = argparse.ArgumentParser(description="Diagnose and repair document numbering")
    parser.add_argument("document_type", nargs="?", help="Document type (all types when omitted)")
    parser.add_argument("--dry-run", action="store_true", help="Diagnose only")
    parser.add_argument("--confirm", action="store_true", help="Apply the repair")
    parser.add_argument("--actor", default="repair_numbering.py", help="Name written to the audit log")
    args = parser.parse_args()

    if not args.dry_run and not args.confirm:
        print("❌ ERROR: pass --dry-run or --confirm")
        sys.exit(1)

    try:
        types = [parse_document_type(args.document_type)] if args.document_type else list(DocumentType)
    except AppException as e:
        print(f"❌ {e.message}")
        sys.exit(1)

    authority = NumberAuthority(async_session)
    failed = False
    for document_type in types:
        try:
            if args.dry_run:
                report = await authority.diagnose(document_type)
            else:
                report = await authority.repair(document_type, actor=args.actor)
        except AppException as e:
            print(f"\n❌ {document_type.value}: {e.message}")
            failed = True
            continue
        print_report(report)

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    asyncio.run(main())
