#!/usr/bin/env python3
"""
Initial Data Loading Script for Authentiqa

Loads development data into the database:
- A SUPER_ADMIN account
- Two demo tenants with Transcript, Diploma and Attestation document kinds
- Sample scan events spread over the last 30 days (optional)
- Fraud cases for a subset of suspicious/forged events (optional)

Idempotent: existing tenants, document kinds and the admin account are
reused, and only the missing number of events and cases is created.

Usage:
    python seed_data.py [--with-samples] [--events N] [--cases N]
"""

import sys
import argparse
import logging
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from sqlalchemy import select

from api.auth import hash_password
from config_manager import get_config
from database.connection import DatabaseSettings, init_db, close_db
from database.models import (
    CaseStatus, DocumentKind, DocumentKindName, DocumentKindStatus, FraudCase,
    ResultLabel, Role, ScanEvent, SourceApp, Tenant, TenantStatus, User,
)
from database.repositories import ScanEventRepository

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@authentiqa.io"
ADMIN_PASSWORD = "Admin123!"

DEMO_TENANTS = [
    {"name": "Mediterranean Institute of Technology", "country": "Tunisia"},
    {"name": "Mediterranean School of Business", "country": "Tunisia"},
]
DOCUMENT_VERSION = "2026.1"
REASON_POOL = ["Template mismatch", "Stamp anomaly", "OCR mismatch", "Credit total mismatch", "Font inconsistency"]
STUDENT_NAMES = ["Alice Smith", "Bob Johnson", "Carla Gomez", "Derek Lee", "Fatima Ben", "Hassan Ali"]
CITIES = ["Tunis", "Sfax", "Sousse", None]


def seed_admin(session, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD, rounds: int = 10) -> bool:
    """Create the SUPER_ADMIN account. Returns True when created."""
    existing = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing:
        logger.info(f"Admin user already exists: {email}")
        return False

    session.add(User(
        name="Super Admin",
        email=email,
        password_hash=hash_password(password, rounds),
        role=Role.SUPER_ADMIN
    ))
    session.flush()
    logger.info(f"Created admin user: {email}")
    return True


def seed_tenants(session) -> List[Tenant]:
    """Ensure the demo tenants exist."""
    tenants = []
    for data in DEMO_TENANTS:
        tenant = session.execute(select(Tenant).where(Tenant.name == data["name"])).scalar_one_or_none()
        if tenant is None:
            tenant = Tenant(name=data["name"], country=data["country"], status=TenantStatus.ACTIVE)
            session.add(tenant)
            session.flush()
            logger.info(f"Created tenant: {data['name']}")
        else:
            logger.info(f"Tenant already exists: {data['name']}")
        tenants.append(tenant)
    return tenants


def seed_document_kinds(session, tenants: List[Tenant]) -> Dict[str, List[DocumentKind]]:
    """Ensure every demo tenant has one kind per document name."""
    kinds_by_tenant: Dict[str, List[DocumentKind]] = {}
    for tenant in tenants:
        kinds = []
        for name in DocumentKindName:
            kind = session.execute(
                select(DocumentKind).where(
                    DocumentKind.tenant_id == tenant.id,
                    DocumentKind.name == name,
                    DocumentKind.version == DOCUMENT_VERSION
                )
            ).scalar_one_or_none()
            if kind is None:
                kind = DocumentKind(
                    tenant_id=tenant.id,
                    name=name,
                    version=DOCUMENT_VERSION,
                    status=DocumentKindStatus.ACTIVE
                )
                session.add(kind)
                session.flush()
            kinds.append(kind)
        kinds_by_tenant[str(tenant.id)] = kinds
    return kinds_by_tenant


def _random_label(rng: random.Random) -> ResultLabel:
    # 70% authentic, 20% suspicious, 10% forged
    r = rng.random()
    if r < 0.7:
        return ResultLabel.AUTHENTIC
    if r < 0.9:
        return ResultLabel.SUSPICIOUS
    return ResultLabel.FORGED


def seed_scan_events(
    session,
    tenants: List[Tenant],
    kinds_by_tenant: Dict[str, List[DocumentKind]],
    target: int = 300,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None
) -> int:
    """Top the demo tenants up to target scan events. Returns how many were created."""
    rng = rng or random.Random()
    now = now or datetime.now(timezone.utc)

    existing = ScanEventRepository(session).count({"tenant_id": {"in": [t.id for t in tenants]}})
    to_create = max(0, target - existing)
    logger.info(f"Existing scan events: {existing}. Will create: {to_create}")

    for i in range(to_create):
        tenant = tenants[i % len(tenants)]
        kind = rng.choice(kinds_by_tenant[str(tenant.id)])
        label = _random_label(rng)

        if label == ResultLabel.AUTHENTIC:
            confidence, risk_score, reasons = rng.uniform(0.8, 1.0), rng.randint(0, 20), []
        elif label == ResultLabel.SUSPICIOUS:
            confidence, risk_score = rng.uniform(0.4, 0.8), rng.randint(20, 60)
            reasons = rng.sample(REASON_POOL, rng.randint(1, 3))
        else:
            confidence, risk_score = rng.uniform(0.0, 0.5), rng.randint(60, 100)
            reasons = rng.sample(REASON_POOL, rng.randint(1, 3))

        created_at = now - timedelta(seconds=rng.randint(0, 30 * 24 * 3600))
        session.add(ScanEvent(
            tenant_id=tenant.id,
            document_kind_id=kind.id,
            source_app=rng.choice(list(SourceApp)),
            content_hash=f"{rng.getrandbits(96):024x}",
            result_label=label,
            confidence=round(confidence, 3),
            risk_score=risk_score,
            reasons=reasons,
            suspicious_regions_count=rng.randint(0, 3),
            extracted_fields={
                "studentId": f"S{rng.randint(10000, 99999)}",
                "name": rng.choice(STUDENT_NAMES),
                "issueDate": created_at.date().isoformat(),
            },
            geo_country=tenant.country,
            geo_city=rng.choice(CITIES),
            device_language=rng.choice(["en", "fr", "ar"]),
            created_at=created_at
        ))

    session.flush()
    return to_create


def seed_fraud_cases(session, target: int = 20, rng: Optional[random.Random] = None) -> int:
    """Open cases for suspicious/forged events that have none, up to target in total."""
    rng = rng or random.Random()

    existing = len(session.execute(select(FraudCase.id)).all())
    need = max(0, target - existing)
    logger.info(f"Existing fraud cases: {existing}. Will create: {need}")
    if not need:
        return 0

    linked = select(FraudCase.scan_event_id)
    candidates = list(session.execute(
        select(ScanEvent.id).where(
            ScanEvent.result_label.in_([ResultLabel.SUSPICIOUS, ResultLabel.FORGED]),
            ScanEvent.id.not_in(linked)
        )
    ).scalars())
    rng.shuffle(candidates)

    for event_id in candidates[:need]:
        session.add(FraudCase(scan_event_id=event_id, status=CaseStatus.OPEN, notes="Seeded case"))
    session.flush()
    return len(candidates[:need])


def main():
    parser = argparse.ArgumentParser(description="Load initial data into the Authentiqa database")
    parser.add_argument("--with-samples", action="store_true", help="Include sample scan events and cases")
    parser.add_argument("--events", type=int, default=300, help="Target number of sample scan events")
    parser.add_argument("--cases", type=int, default=20, help="Target number of sample fraud cases")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible samples")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=" * 50)
    logger.info("Authentiqa Initial Data Loading")
    logger.info("=" * 50)

    config = get_config()
    rng = random.Random(args.seed)

    try:
        db = init_db(DatabaseSettings.from_config(config.database))
        db.create_tables()

        # Commit per stage: accounts and tenants survive a failed sample run
        with db.get_unit_of_work() as uow:
            session = uow.session
            logger.info("[1/4] Admin account...")
            seed_admin(session, rounds=config.auth.bcrypt_rounds)

            logger.info("[2/4] Tenants and document kinds...")
            tenants = seed_tenants(session)
            kinds = seed_document_kinds(session, tenants)
            uow.commit()

            if args.with_samples:
                logger.info("[3/4] Sample scan events...")
                created = seed_scan_events(session, tenants, kinds, target=args.events, rng=rng)
                logger.info(f"Scan events created: {created}")

                logger.info("[4/4] Sample fraud cases...")
                created = seed_fraud_cases(session, target=args.cases, rng=rng)
                logger.info(f"Fraud cases created: {created}")
                uow.commit()
            else:
                logger.info("[3/4] Skipping samples (use --with-samples to include)")

        logger.info("=" * 50)
        logger.info("Initial data loading complete!")
        logger.info("=" * 50)
    except Exception as e:
        logger.error(f"Error loading initial data: {e}")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()
