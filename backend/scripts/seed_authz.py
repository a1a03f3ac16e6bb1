#!/usr/bin/env python
"""Idempotent seed script for countries, the super administrator and role defaults.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> section summary
    python backend/scripts/seed_authz.py --validate    # check every stored user permission payload
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --export-json roles.json
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select, inspect

# Allow running from repo root or from backend/
sys.path.append(os.path.abspath('backend'))
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from quantum_crm import create_app, get_db  # type: ignore
from quantum_crm.constants.permissions import ROLE_DEFAULT_PERMISSIONS, Role
from quantum_crm.models.authz import Base, Country, User, UserPermission
from quantum_crm.services.permissions import PermissionPayloadError, parse_permissions

DEFAULT_COUNTRIES = (
    ('Colombia', 'CO'),
    ('México', 'MX'),
    ('Perú', 'PE'),
    ('Chile', 'CL'),
)


def ensure_countries(session) -> int:
    existing = {c.code for c in session.execute(select(Country)).scalars().all()}
    created = 0
    for name, code in DEFAULT_COUNTRIES:
        if code not in existing:
            session.add(Country(name=name, code=code))
            created += 1
    session.flush()
    return created


def ensure_super_admin(session) -> bool:
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    if session.execute(select(User).where(User.email==admin_email)).scalar_one_or_none():
        return False
    user = User(name='Super Administrador', email=admin_email, password_hash='', role=Role.SUPERADMIN.value)
    user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    session.add(user)
    session.flush()
    print(f"[INFO] Created super administrator {admin_email} with temporary password.")
    return True


def validate_stored_permissions(session):
    """Return a list of problems: malformed payloads and users with an unknown role."""
    problems = []
    for up in session.execute(select(UserPermission)).scalars().all():
        try:
            parse_permissions(up.permissions)
        except PermissionPayloadError as e:
            problems.append(f"user {up.user_id}: invalid permissions payload ({e})")
    for user in session.execute(select(User).where(User.is_deleted.is_(False))).scalars().all():
        if Role.parse(user.role) is None:
            problems.append(f"user {user.id}: unknown role '{user.role}' (no role defaults apply)")
    return problems


def build_role_default_map():
    return {role.value: ROLE_DEFAULT_PERMISSIONS[role] for role in Role}


def compute_checksum(mapping) -> str:
    canonical = json.dumps(mapping, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def print_role_summary():
    rows = []
    for role, payload in build_role_default_map().items():
        sections = sorted(payload['sections'])
        rows.append((role, len(sections), sections))
    name_w = max(len(r[0]) for r in rows)
    print(f"{'Role'.ljust(name_w)} | Sections | Keys")
    print('-' * (name_w + 40))
    for name, cnt, keys in rows:
        print(f"{name.ljust(name_w)} | {str(cnt).rjust(8)} | {', '.join(keys)}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed countries, the super administrator and validate permission payloads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  validate: seed_authz.py --validate\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print the role default sections')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role default payloads as JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate stored user permission payloads; exits 2 on problems')
    p.add_argument('--fail-if-changed', metavar='CHECKSUM', help='Exit 4 if the role defaults checksum differs from the provided value')
    return p.parse_args(argv)


def main(argv=None, app=None):
    args = parse_args(argv)
    app = app or create_app()
    with app.app_context():
        session = get_db()
        engine = session.get_bind()
        if not inspect(engine).has_table('users'):
            # Bootstrap only; in real environments run alembic upgrade
            import quantum_crm.models.lead  # noqa: F401
            import quantum_crm.models.activity  # noqa: F401
            Base.metadata.create_all(engine)
        try:
            created_c = ensure_countries(session)
            created_admin = ensure_super_admin(session)
            if args.validate:
                problems = validate_stored_permissions(session)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for p in problems:
                        print(' -', p)
                    session.rollback()
                    return 2
                print('[VALIDATION] OK: All stored permission payloads are valid.')
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Countries would create: {created_c}, Super admin would create: {created_admin}")
            else:
                session.commit()
                print(f"[DONE] Countries created: {created_c}, Super admin created: {created_admin}")
            if args.show_roles:
                print('\nRole Default Summary:')
                print_role_summary()

            role_map = build_role_default_map()
            checksum = compute_checksum(role_map)
            if args.fail_if_changed:
                if checksum != args.fail_if_changed:
                    print(f"[CHECKSUM] MISMATCH: expected {args.fail_if_changed} got {checksum}")
                    return 4
                print(f"[CHECKSUM] OK: {checksum}")
            if args.export_json is not None:
                payload = {
                    'roles': role_map,
                    'meta': {
                        'roles_checksum_sha256': checksum,
                        'role_names_sorted': sorted(role_map),
                        'dry_run': args.dry_run,
                    }
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
    return 0

if __name__ == '__main__':
    sys.exit(main())
