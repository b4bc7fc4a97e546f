"""
M365 License Engine — Main Orchestrator

Usage:
    python -m m365_license_engine catalog download [--force]
    python -m m365_license_engine index build
    python -m m365_license_engine index summary
    python -m m365_license_engine query --name "EXCHANGE_S_*" --id <GUID> [--top 10]
    python -m m365_license_engine users --regex "^TEAMS" [--include-disabled] --output report.json
    python -m m365_license_engine ca-licenses --output ca.json

Profile management:
    python -m m365_license_engine profile add <name> --tenant-id ... --client-id ...
    python -m m365_license_engine profile list
    python -m m365_license_engine profile remove <name>
    python -m m365_license_engine profile set-default <name>

Tenant access is STRICTLY READ-ONLY.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .config import EngineConfig, CertificateAuth, DelegatedAuth
from .safety.guardian import SafetyGuardian
from .auth.authenticator import Authenticator, AuthenticationError
from .graph.client import GraphClient, GraphAPIError
from .catalog import (
    CatalogError,
    ServicePlanIndex,
    ensure_catalog,
    ensure_index,
    has_criteria,
    index_summary,
    query,
    rebuild_index,
    resolve_target_ids,
)
from .collectors import ConditionalAccessCollector, DirectoryServiceError, LicensingCollector
from .analyzers import (
    ConditionalAccessLicenseAnalyzer,
    build_assignment_report,
    classify_assignments,
    sku_plan_table,
)
from .reporting import (
    export_csv,
    export_findings_json,
    export_json,
    export_markdown,
    export_query_csv,
)
from .catalog.atomic import write_json_atomic
from .profiles import ProfileStore, TenantProfile, resolve_profile

logger = logging.getLogger("m365_license_engine")


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action
    store = ProfileStore.load(args.profiles_file)

    if action == "list":
        return _profile_list(store)
    elif action == "add":
        return _profile_add(store, args)
    elif action == "remove":
        if store.remove(args.profile_name):
            print(f"  ✅ Profile '{args.profile_name}' removed.")
            return 0
        print(f"  ❌ Profile '{args.profile_name}' not found.")
        return 1
    elif action == "set-default":
        if store.set_default(args.profile_name):
            print(f"  ✅ Default profile set to '{args.profile_name}'.")
            return 0
        print(f"  ❌ Profile '{args.profile_name}' not found.")
        return 1
    print("Usage: python -m m365_license_engine profile {add|list|remove|set-default}")
    return 0


def _profile_list(store: ProfileStore) -> int:
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_license_engine profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return 0

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Client ID':<38s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        display = f" ({p.tenant_display_name})" if p.tenant_display_name else ""
        print(f"  {p.name + display:<20s} {p.tenant_id:<38s} {p.client_id:<38s}{default_marker}")
    print()
    return 0


def _profile_add(store: ProfileStore, args: argparse.Namespace) -> int:
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "./base64.txt",
        tenant_display_name=args.display_name or "",
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or greater, got {number}")
    return number


def _add_criteria_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--id", dest="ids", nargs="+", default=[], metavar="PLAN_ID",
                   help="Exact service plan id(s)")
    p.add_argument("--name", dest="names", nargs="+", default=[], metavar="GLOB",
                   help="Wildcard pattern(s) over service plan names (* and ?)")
    p.add_argument("--regex", dest="regexes", nargs="+", default=[], metavar="REGEX",
                   help="Regular expression(s) over service plan names")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365_license_engine",
        description="M365 License Engine — service plan lookups and license assignment reports",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Directory holding the catalog CSV and index (default: ./license_data)")
    parser.add_argument("--output-dir", type=Path, default=None,
                        help="Directory for users / ca-licenses reports (default: ./license_reports)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    # --- Tenant identity (users / ca-licenses) ---
    parser.add_argument("--profile", "-p", type=str, default=None,
                        help="Tenant profile name to use (run 'profile list' to see available)")
    parser.add_argument("--profiles-file", type=Path, default=None, help=argparse.SUPPRESS)
    parser.add_argument("--delegated", action="store_true",
                        help="Use delegated (device-code) authentication instead of certificate")
    parser.add_argument("--cert-path", type=Path,
                        help="Path to base64-encoded certificate file (overrides profile)")
    parser.add_argument("--tenant-id", type=str, default=None,
                        help="Tenant ID (overrides profile; use with --client-id for ad-hoc runs)")
    parser.add_argument("--client-id", type=str, default=None,
                        help="Client ID (overrides profile; use with --tenant-id for ad-hoc runs)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # catalog
    cat_p = subparsers.add_parser("catalog", help="Manage the licensing catalog CSV")
    cat_sub = cat_p.add_subparsers(dest="catalog_action")
    dl_p = cat_sub.add_parser("download", help="Download the licensing catalog")
    dl_p.add_argument("--force", action="store_true", help="Re-download even if present")

    # index
    idx_p = subparsers.add_parser("index", help="Build or inspect the service plan index")
    idx_sub = idx_p.add_subparsers(dest="index_action")
    build_p = idx_sub.add_parser("build", help="Build the index from the catalog")
    build_p.add_argument("--catalog", type=Path, help="Catalog CSV to index (default: data dir)")
    sum_p = idx_sub.add_parser("summary", help="Show the plans found in the most products")
    sum_p.add_argument("--top", type=_non_negative_int, default=10)

    # query
    q_p = subparsers.add_parser("query", help="Find products containing all given service plans")
    _add_criteria_args(q_p)
    q_p.add_argument("--top", type=_non_negative_int, default=None, help="Show only the first N products")
    q_p.add_argument("--summary", action="store_true", help="Also print the index summary")
    q_p.add_argument("--json", action="store_true", help="Print the result as JSON")
    q_p.add_argument("--output", "-o", type=Path, help="Write result to a .json or .csv file")

    # users
    u_p = subparsers.add_parser("users", help="Report users holding any of the given service plans")
    _add_criteria_args(u_p)
    u_p.add_argument("--include-disabled", action="store_true",
                     help="Include assignments where the matching plan is disabled")
    u_p.add_argument("--output", "-o", type=Path,
                     help="Report path, extension replaced per format (default: timestamped file in --output-dir)")
    u_p.add_argument("--formats", nargs="+", choices=["json", "csv", "markdown"], default=None,
                     help="Output formats to generate (default: from config, else json)")

    # ca-licenses
    ca_p = subparsers.add_parser("ca-licenses",
                                 help="Check Conditional Access features against licensed tiers")
    ca_p.add_argument("--output", "-o", type=Path,
                     help="Findings JSON path (default: timestamped file in --output-dir)")

    # profile
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt",
                       help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--display-name", help="Friendly tenant display name for reports")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")
    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")
    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build engine configuration from config file and CLI overrides."""
    if args.config and args.config.exists():
        config = EngineConfig.from_file(args.config)
    else:
        config = EngineConfig()

    if args.data_dir:
        config.catalog.data_dir = str(args.data_dir)
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.verbose:
        config.verbose = True
    return config


def resolve_tenant_auth(args: argparse.Namespace, config: EngineConfig) -> Optional[TenantProfile]:
    """
    Fill config.auth from profile, CLI flags or the config file.
    Exits with a message when no tenant identity can be found.
    """
    if args.delegated:
        config.auth.mode = "delegated"

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile, args.profiles_file)
        if not profile:
            print(f"\n❌ Profile '{args.profile}' not found. Use 'profile list' to see available profiles.")
            sys.exit(1)
    elif not args.config and not args.tenant_id:
        profile = resolve_profile(None, args.profiles_file)

    if profile:
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = str(args.cert_path) if args.cert_path else profile.resolve_cert_path()
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
    elif config.auth.certificate:
        tenant_id = config.auth.certificate.tenant_id
        client_id = config.auth.certificate.client_id
        cert_path = str(args.cert_path) if args.cert_path else config.auth.certificate.certificate_path
    elif config.auth.delegated:
        tenant_id = config.auth.delegated.tenant_id
        client_id = config.auth.delegated.client_id
        cert_path = ""
    else:
        print("\n❌ No tenant credentials found. Use one of:")
        print("   • --profile <name>             (from saved profiles)")
        print("   • --tenant-id X --client-id Y  (ad-hoc)")
        print("   • --config config.json         (JSON config file)")
        sys.exit(1)

    if config.auth.mode == "delegated":
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
    else:
        password = config.auth.certificate.certificate_password if config.auth.certificate else ""
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=password,
        )
    return profile


def _criteria(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "ServicePlanIds": list(args.ids),
        "NamePatterns": list(args.names),
        "NameRegexes": list(args.regexes),
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def cmd_catalog(args: argparse.Namespace, config: EngineConfig) -> int:
    if args.catalog_action != "download":
        print("Usage: python -m m365_license_engine catalog download [--force]")
        return 0
    path = await ensure_catalog(config.catalog, force=args.force)
    print(f"  📄 Catalog:    {path}")
    return 0


async def cmd_index(args: argparse.Namespace, config: EngineConfig) -> int:
    if args.index_action == "build":
        catalog_path = args.catalog or await ensure_catalog(config.catalog)
        index = rebuild_index(catalog_path, config.catalog.index_path)
        print(f"  ✅ Indexed {len(index)} service plans from {index.rows_processed} rows")
        print(f"  📄 Index:      {config.catalog.index_path}")
        return 0
    if args.index_action == "summary":
        index = await ensure_index(config.catalog)
        _print_summary(index, args.top)
        return 0
    print("Usage: python -m m365_license_engine index {build|summary}")
    return 0


def _print_summary(index: ServicePlanIndex, top: int = 10) -> None:
    print(f"\n  Index generated: {index.generated_utc or 'unknown'}")
    print(f"  Source file:     {index.source_file or 'unknown'}")
    print(f"  Service plans:   {len(index)}")
    print(f"  Rows processed:  {index.rows_processed}\n")
    print(f"  {'Service Plan Id':<38s} {'Products':>8s}  Names")
    print(f"  {'─'*38} {'─'*8}  {'─'*30}")
    for row in index_summary(index, top):
        print(f"  {row['ServicePlanId']:<38s} {row['ProductCount']:>8d}  {row['ServicePlanNames']}")
    print()


async def cmd_query(args: argparse.Namespace, config: EngineConfig) -> int:
    index = await ensure_index(config.catalog)
    if args.summary:
        _print_summary(index)

    if not has_criteria(args.ids, args.names, args.regexes):
        print("  ℹ  No search criteria supplied (use --id, --name or --regex).")
        return 0

    targets = resolve_target_ids(index, args.ids, args.names, args.regexes)
    if not targets:
        print("  ⚠  No service plans matched the search criteria.")
        return 0

    result = query(index, targets, top=args.top)

    if args.output:
        if args.output.suffix.lower() == ".csv":
            export_query_csv(result, args.output)
        else:
            write_json_atomic(args.output, result.to_dict())
        logger.info(f"Query result written to {args.output}")

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return 0

    print(f"\n  Target service plans ({len(targets)}):")
    for plan in result.per_plan_products:
        print(f"    {plan.service_plan_id}  {', '.join(plan.service_plan_names)}"
              f"  ({len(plan.product_names)} products)")
    unknown = sorted(t for t in targets if t not in index)
    for pid in unknown:
        print(f"    {pid}  ⚠  not in catalog")

    shown = len(result.products_with_all_plans)
    print(f"\n  Products containing all {len(targets)} plan(s): {result.total_matches}"
          + (f" (showing {shown})" if result.truncated else ""))
    for match in result.products_with_all_plans:
        print(f"    • {match.product_display_name:<60s} {', '.join(match.string_ids)}")
    if args.output:
        print(f"\n  📄 Result:     {args.output}")
    print()
    return 0


async def _authenticate(args: argparse.Namespace, config: EngineConfig) -> Authenticator:
    resolve_tenant_auth(args, config)
    print("\n🔐 Authenticating...")
    authenticator = Authenticator(config.auth)
    await authenticator.acquire_token()
    print("✅ Authentication successful.")
    return authenticator


def _print_required_permissions() -> None:
    print("\n  The app registration needs these Graph application permissions:")
    for permission, purpose in Authenticator.list_required_permissions().items():
        print(f"    • {permission:<24s} {purpose}")


async def cmd_users(args: argparse.Namespace, config: EngineConfig) -> int:
    if not has_criteria(args.ids, args.names, args.regexes):
        print("  ℹ  No search criteria supplied (use --id, --name or --regex).")
        return 0

    # Name criteria need the catalog index; exact ids do not
    index = ServicePlanIndex()
    if args.names or args.regexes:
        index = await ensure_index(config.catalog)
    targets = resolve_target_ids(index, args.ids, args.names, args.regexes)
    if not targets:
        print("  ⚠  No service plans matched the search criteria.")
        return 0
    print(f"  🎯 Target service plans: {len(targets)}")

    guardian = SafetyGuardian()
    guardian.print_banner()
    authenticator = await _authenticate(args, config)

    async with GraphClient(access_token=authenticator.access_token, guardian=guardian) as client:
        collected = await LicensingCollector(graph=client, config=config.collection).execute()
        graph_stats = client.get_stats()

    users = collected.data.get("users", [])
    assignments = classify_assignments(
        users,
        sku_plan_table(collected.data.get("subscribed_skus", [])),
        targets,
        include_disabled=args.include_disabled,
    )
    criteria = {
        **_criteria(args),
        "ResolvedServicePlanIds": sorted(targets),
        "IncludeDisabled": args.include_disabled,
    }
    report = build_assignment_report(
        assignments,
        users_processed=len(users),
        criteria=criteria,
        tenant_id=collected.data.get("tenant", {}).get("id"),
        caller=authenticator.caller_identity,
        retrieved_utc=datetime.now(timezone.utc).isoformat(),
    )

    summary = report["Summary"]
    print(f"\n  Users processed:       {summary['UsersProcessed']}")
    print(f"  Users matched:         {summary['UsersMatched']}")
    print(f"  Matching assignments:  {summary['TotalMatchingAssignments']}")
    print(f"  Unique SKUs:           {summary['UniqueSkus']}")

    output = args.output or _default_report_path(config, "license_assignments")
    formats = args.formats or config.output.formats or ["json"]
    created = generate_reports(
        report, output, formats,
        audit=guardian.get_audit_record(), graph_stats=graph_stats,
    )
    for path in created:
        print(f"  📄 Report:     {path}")
    return 0


def _default_report_path(config: EngineConfig, stem: str) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return config.output.report_dir / f"{stem}_{stamp}.json"


def generate_reports(
    report: dict,
    output: Path,
    formats: list[str],
    audit: Optional[dict] = None,
    graph_stats: Optional[dict] = None,
) -> list[Path]:
    """Write each requested format next to `output`."""
    created = []
    if "json" in formats:
        created.append(export_json(report, output.with_suffix(".json"), audit, graph_stats))
    if "csv" in formats:
        created.append(export_csv(report, output.with_suffix(".csv")))
    if "markdown" in formats:
        created.append(export_markdown(report, output.with_suffix(".md")))
    return created


async def cmd_ca_licenses(args: argparse.Namespace, config: EngineConfig) -> int:
    guardian = SafetyGuardian()
    guardian.print_banner()
    authenticator = await _authenticate(args, config)

    async with GraphClient(access_token=authenticator.access_token, guardian=guardian) as client:
        collected = await ConditionalAccessCollector(graph=client, config=config.collection).execute()
        graph_stats = client.get_stats()

    for w in collected.metadata.get("warnings", []):
        print(f"      ⚠  {w}")

    findings = ConditionalAccessLicenseAnalyzer().analyze(
        {"conditional_access": {**collected.data, "_metadata": collected.metadata}}
    )
    for f in findings:
        print(f"  [{f.severity:<13s}] {f.control_name}")

    path = export_findings_json(
        findings,
        {"caller": authenticator.caller_identity},
        args.output or _default_report_path(config, "ca_licenses"),
        audit=guardian.get_audit_record(),
        graph_stats=graph_stats,
    )
    print(f"  📄 Findings:   {path}")
    return 0


COMMANDS = {
    "catalog": cmd_catalog,
    "index": cmd_index,
    "query": cmd_query,
    "users": cmd_users,
    "ca-licenses": cmd_ca_licenses,
}


async def main_async(argv: Optional[list[str]] = None) -> int:
    """Async entry point."""
    args = parse_args(argv)

    if args.command == "profile":
        return _cmd_profile(args)

    config = build_config(args)
    logging.basicConfig(
        level=logging.INFO if config.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"M365 License Engine v{__version__} — run with --help for usage.")
        return 0

    try:
        return await handler(args, config)
    except CatalogError as e:
        # ProvisioningError names the failed step (download / index build)
        print(f"\n❌ {e}")
    except AuthenticationError as e:
        print(f"\n❌ Authentication failed: {e}")
    except (DirectoryServiceError, GraphAPIError) as e:
        print(f"\n❌ Directory service error: {e}")
        if e.status_code in (401, 403):
            _print_required_permissions()
    return 1


def main():
    """Synchronous entry point for `python -m m365_license_engine`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
