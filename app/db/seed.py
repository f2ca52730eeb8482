"""
Demo data seeding. Only runs when SEED_DEMO=true (which requires DEBUG).
"""
from app.db.session import get_db_context
from app.db.models import User, Evaluator, Vendor, AdminSettings, ApprovalStatus, RfiStatus
from app.core.rbac import Role
from app.core.security import get_password_hash
from app.core.logging import get_logger

logger = get_logger(__name__)

DEMO_PASSWORD = "demo-password-1"

DEMO_VENDORS = [
    ("DB Broadcast", ["Media"]),
    ("Accenture", ["Media", "AI"]),
    ("Atos", ["Media", "AI"]),
    ("BCG", ["Media", "AI"]),
    ("Cognizant", ["AI"]),
    ("Dell", ["AI"]),
    ("Digitas", ["AI"]),
    ("Diversified", ["Media"]),
    ("GlobalLogic", ["Media", "AI"]),
    ("GlobeCast", ["Media"]),
    ("IBM", ["AI"]),
    ("NEP", ["Media"]),
    ("Qvest", ["Media"]),
]

# email, name, role
DEMO_USERS = [
    ("admin@example.com", "Demo Admin", Role.ADMIN),
    ("dm1@example.com", "Dana Decision", Role.DECISION_MAKER),
    ("dm2@example.com", "Drew Decision", Role.DECISION_MAKER),
    ("dm3@example.com", "Devon Decision", Role.DECISION_MAKER),
    ("contributor@example.com", "Casey Contributor", Role.CONTRIBUTOR),
]


def seed_demo_data():
    """Create demo users, vendors and default settings if the DB has no vendors."""
    with get_db_context() as db:
        if db.query(Vendor).first():
            logger.info("Demo seed: vendors already exist. Skipping.")
            return

        if not db.query(AdminSettings).first():
            db.add(AdminSettings(id=1))

        for name, scopes in DEMO_VENDORS:
            db.add(Vendor(
                name=name,
                scopes=scopes,
                contacts=[],
                rfi_status=RfiStatus.NOT_RECEIVED.value,
            ))

        for email, name, role in DEMO_USERS:
            if db.query(User).filter(User.email == email).first():
                continue
            is_dm = role == Role.DECISION_MAKER
            user = User(
                email=email,
                hashed_password=get_password_hash(DEMO_PASSWORD),
                name=name,
                role=role.value,
                approval_status=ApprovalStatus.APPROVED.value,
                can_access_chat=is_dm,
                can_make_direct_decision=is_dm,
                can_print_reports=role != Role.CONTRIBUTOR,
                can_export_data=role != Role.CONTRIBUTOR,
            )
            db.add(user)
            db.flush()
            db.add(Evaluator(user_id=user.id, name=name, email=email, role=role.value))

    logger.info(f"Demo data seeded: {len(DEMO_VENDORS)} vendors, {len(DEMO_USERS)} users")
