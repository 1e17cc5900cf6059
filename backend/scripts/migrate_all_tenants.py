#!/usr/bin/env python3
"""
Script de migration pour tous les tenants

Ce script applique les changesets du changelog (TENANT_CHANGELOG) à tous les
schémas des tenants actifs enregistrés dans la base principale.

Usage:
    # Dry-run (affiche les changesets en attente sans les appliquer)
    python backend/scripts/migrate_all_tenants.py --dry-run

    # Appliquer les changesets
    python backend/scripts/migrate_all_tenants.py

    # Migrer un seul tenant
    python backend/scripts/migrate_all_tenants.py --tenant-id <tenant_id>

    # Afficher l'historique des changesets appliqués
    python backend/scripts/migrate_all_tenants.py --history

    # Annuler le dernier changeset d'un tenant
    python backend/scripts/migrate_all_tenants.py --rollback --tenant-id <tenant_id>

    # Libérer le verrou laissé par une migration interrompue
    python backend/scripts/migrate_all_tenants.py --release-lock --tenant-id <tenant_id>
"""

import sys
import argparse
from pathlib import Path

# Ajouter le répertoire backend au path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from app import create_app
from app.models.tenant import Tenant
from app.services.tenant_service import TenantService
from app.tenant_db import ProvisioningError
from app.utils.database import get_provisioner
import logging

logger = logging.getLogger(__name__)


def migrate_tenant(tenant: Tenant, dry_run: bool = False) -> dict:
    """
    Migre le schéma d'un tenant vers la dernière version du changelog

    Args:
        tenant: Instance du tenant à migrer
        dry_run: Si True, liste les changesets en attente sans les appliquer

    Returns:
        dict: Résultat de la migration avec status et détails
    """
    result = {
        "tenant_id": tenant.tenant_id,
        "tenant_name": tenant.name,
        "schema": tenant.schema_name,
        "status": "success",
        "pending": [],
        "applied": [],
        "error": None
    }

    try:
        if dry_run:
            pending = get_provisioner().pending(tenant.tenant_id, tenant.schema_name)
            result["pending"] = [step.step_id for step in pending]

            if pending:
                result["status"] = "would_migrate"
                logger.info(f"  → {tenant.name} would apply {len(pending)} changeset(s): {', '.join(result['pending'])}")
            else:
                result["status"] = "up_to_date"
                logger.info(f"  ✓ {tenant.name} already up to date")
            return result

        _, applied = TenantService.update_tenant_schema(tenant.tenant_id)
        result["applied"] = applied

        if applied:
            logger.info(f"  ✓ {tenant.name} migrated successfully ({len(applied)} changeset(s))")
        else:
            result["status"] = "up_to_date"
            logger.info(f"  ✓ {tenant.name} already up to date")

    except ProvisioningError as e:
        result["status"] = "error"
        result["error"] = str(e)
        logger.error(f"  ✗ {tenant.name} migration failed: {e.cause}")

    return result


def rollback_tenant(tenant: Tenant) -> dict:
    """
    Annule le dernier changeset appliqué au schéma d'un tenant

    Args:
        tenant: Instance du tenant

    Returns:
        dict: Résultat avec status, changeset annulé et erreur éventuelle
    """
    result = {
        "tenant_id": tenant.tenant_id,
        "tenant_name": tenant.name,
        "schema": tenant.schema_name,
        "status": "rolled_back",
        "rolled_back": None,
        "error": None
    }

    try:
        _, step_id = TenantService.rollback_tenant_schema(tenant.tenant_id)
        result["rolled_back"] = step_id
        logger.info(f"  ✓ {tenant.name}: changeset {step_id} rolled back")
    except ProvisioningError as e:
        result["status"] = "error"
        result["error"] = str(e)
        logger.error(f"  ✗ {tenant.name} rollback failed: {e.cause}")

    return result


def release_tenant_lock(tenant: Tenant) -> dict:
    """
    Libère le verrou du ledger laissé par une migration interrompue

    Args:
        tenant: Instance du tenant

    Returns:
        dict: Résultat avec status, ancien détenteur du verrou et erreur éventuelle
    """
    result = {
        "tenant_id": tenant.tenant_id,
        "tenant_name": tenant.name,
        "schema": tenant.schema_name,
        "status": "released",
        "holder": None,
        "error": None
    }

    try:
        _, holder = TenantService.release_schema_lock(tenant.tenant_id)
        result["holder"] = holder
        if holder:
            logger.info(f"  ✓ {tenant.name}: lock held by {holder} released")
        else:
            logger.info(f"  ✓ {tenant.name}: schema was not locked")
    except ProvisioningError as e:
        result["status"] = "error"
        result["error"] = str(e)
        logger.error(f"  ✗ {tenant.name} lock release failed: {e.cause}")

    return result


def show_migration_history(tenant: Tenant):
    """
    Affiche l'historique des changesets appliqués pour un tenant

    Args:
        tenant: Instance du tenant
    """
    print(f"\n{'='*80}")
    print(f"Tenant: {tenant.name} ({tenant.schema_name}) - {tenant.status}")
    print(f"{'='*80}")

    try:
        history = get_provisioner().history(tenant.tenant_id, tenant.schema_name)
    except ProvisioningError as e:
        print(f"Error retrieving history: {e}")
        return

    if not history:
        print("No migration history found")
        return

    print(f"\n{'#':<5} {'Changeset':<35} {'Applied At':<22} {'Description'}")
    print(f"{'-'*5} {'-'*35} {'-'*22} {'-'*30}")

    for entry in history:
        applied_at = entry['applied_at'].strftime('%Y-%m-%d %H:%M:%S') if entry['applied_at'] else 'N/A'
        changeset = f"{entry['author']}:{entry['id']}"[:35]
        description = (entry['description'] or '')[:30]
        print(f"{entry['order_executed']:<5} {changeset:<35} {applied_at:<22} {description}")


def print_summary(results: list) -> int:
    """
    Affiche le résumé et retourne le nombre d'erreurs

    Args:
        results: Résultats de migrate_tenant / rollback_tenant
    """
    print(f"\n{'='*80}")
    print("Migration Summary")
    print(f"{'='*80}\n")

    success_count = sum(1 for r in results if r['status'] in ['success', 'up_to_date', 'rolled_back', 'released'])
    error_count = sum(1 for r in results if r['status'] == 'error')
    would_migrate_count = sum(1 for r in results if r['status'] == 'would_migrate')

    print(f"Total tenants: {len(results)}")
    print(f"  ✓ Successful: {success_count}")
    if would_migrate_count > 0:
        print(f"  → Would migrate: {would_migrate_count}")
    if error_count > 0:
        print(f"  ✗ Errors: {error_count}")

    errors = [r for r in results if r['status'] == 'error']
    if errors:
        print(f"\n{'='*80}")
        print("Errors:")
        print(f"{'='*80}")
        for error in errors:
            print(f"\n{error['tenant_name']} ({error['schema']}):")
            print(f"  {error['error']}")

    return error_count


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Migrate tenant database schemas',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show pending changesets without applying them'
    )
    parser.add_argument(
        '--tenant-id',
        type=str,
        help='Process only a specific tenant by tenant identifier'
    )
    parser.add_argument(
        '--history',
        action='store_true',
        help='Show applied changesets for all tenants (or specific tenant with --tenant-id)'
    )
    parser.add_argument(
        '--rollback',
        action='store_true',
        help='Revert the last applied changeset (requires --tenant-id)'
    )
    parser.add_argument(
        '--release-lock',
        action='store_true',
        help='Release a ledger lock left by a crashed run and mark the tenant FAILED (requires --tenant-id)'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Configuration name (development, production, testing); defaults to FLASK_ENV'
    )
    return parser


def main(argv=None, app=None) -> int:
    """Point d'entrée principal du script, retourne le code de sortie"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.rollback and not args.tenant_id:
        parser.error('--rollback requires --tenant-id')
    if args.release_lock and not args.tenant_id:
        parser.error('--release-lock requires --tenant-id')

    # Créer l'application Flask et le contexte
    app = app or create_app(args.config)

    with app.app_context():
        # Récupérer les tenants
        if args.tenant_id:
            tenant = Tenant.find_by_tenant_id(args.tenant_id)
            if tenant is None:
                print(f"Error: Tenant with ID '{args.tenant_id}' not found")
                return 1
            tenants = [tenant]
        else:
            tenants = Tenant.get_all_active()

        if not tenants:
            print("No tenants found in the database")
            return 0

        # Afficher l'historique
        if args.history:
            for tenant in tenants:
                show_migration_history(tenant)
            return 0

        if args.release_lock:
            result = release_tenant_lock(tenants[0])
            return 1 if print_summary([result]) else 0

        if args.rollback:
            result = rollback_tenant(tenants[0])
            return 1 if print_summary([result]) else 0

        # Migrer les tenants
        print(f"\n{'='*80}")
        print("Tenant Schema Migration")
        print(f"{'='*80}")
        print(f"Found {len(tenants)} tenant(s) to process")
        print(f"Mode: {'DRY RUN (no changes will be made)' if args.dry_run else 'LIVE (changesets will be applied)'}")
        print(f"{'='*80}\n")

        results = []
        for tenant in tenants:
            logger.info(f"Processing tenant: {tenant.name} ({tenant.schema_name})")
            results.append(migrate_tenant(tenant, dry_run=args.dry_run))

        # Code de sortie
        return 1 if print_summary(results) else 0


if __name__ == "__main__":
    sys.exit(main())
