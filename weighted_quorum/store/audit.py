"""
Intent Tally Audit Tool — recomputes every pending tally against the live config.

Tallies are running sums: each approval adds the member's weight at the
moment it was cast. If the group config is replaced while intents are
pending (a member removed or reweighted), stored tallies silently diverge
from what the current config would produce. The engine does not reconcile
this; this tool detects it.

For each pending intent the audit checks:
1. every approver is still a member
2. stored total_weight equals the current weights of its approvers
3. stored role_weight equals the same sum over holders of the required role

Usage:
    python -m weighted_quorum.store.audit
    python -m weighted_quorum.store.audit --database-url sqlite:///quorum.db --config quorum.json
    python -m weighted_quorum.store.audit --verbose
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from weighted_quorum.config import settings
from weighted_quorum.governance.approvals import is_threshold_reached
from weighted_quorum.registry.builder import load_config
from weighted_quorum.registry.errors import ConfigInvalid
from weighted_quorum.registry.schema import Multisig
from weighted_quorum.store.service import IntentStore, PendingIntent, SqlIntentStore

console = Console()


@dataclass
class IntentAudit:
    """Result of recomputing one intent's tally."""

    key: str
    required_role: str
    stored_total: int
    stored_role: int
    expected_total: int
    expected_role: int
    missing_members: list[str] = field(default_factory=list)
    executable: bool = False

    @property
    def is_consistent(self) -> bool:
        return (
            not self.missing_members
            and self.stored_total == self.expected_total
            and self.stored_role == self.expected_role
        )


def audit_intent(intent: PendingIntent, config: Multisig) -> IntentAudit:
    """Recompute the tally of ``intent`` from its approved set."""
    expected_total = 0
    expected_role = 0
    missing: list[str] = []
    for address in intent.outcome.approved_addresses():
        if not config.is_member(address):
            missing.append(address)
            continue
        member = config.member(address)
        expected_total += member.weight
        if member.has_role(intent.required_role):
            expected_role += member.weight

    return IntentAudit(
        key=intent.key,
        required_role=intent.required_role,
        stored_total=intent.outcome.total_weight,
        stored_role=intent.outcome.role_weight,
        expected_total=expected_total,
        expected_role=expected_role,
        missing_members=missing,
        executable=is_threshold_reached(intent.outcome, config, intent.required_role),
    )


def run_audit(store: IntentStore, config: Multisig, verbose: bool = False) -> bool:
    """
    Audit every pending intent in ``store``.

    Args:
        store: The intent store to read.
        config: The group config tallies should agree with.
        verbose: Print a per-intent table if True.

    Returns:
        True if every tally is consistent, False otherwise.
    """
    console.print("\n[bold blue]═══ Pending Intent Tally Audit ═══[/bold blue]")

    intents = store.list_intents()
    console.print(f"  Pending intents: [bold]{len(intents)}[/bold]")
    console.print(
        f"  Members: [bold]{len(config.members)}[/bold]  "
        f"Global threshold: [bold]{config.global_threshold}[/bold]"
    )

    if not intents:
        console.print("[yellow]⚠ No pending intents — nothing to verify[/yellow]")
        return True

    console.print("  Recomputing tallies...", end=" ")
    start_time = time.time()
    results = [audit_intent(intent, config) for intent in intents]
    elapsed = time.time() - start_time

    drifted = [r for r in results if not r.is_consistent]
    if drifted:
        console.print("[bold red]✗ DRIFT[/bold red]")
        for result in drifted:
            console.print(
                f"  {result.key}: stored {result.stored_total}/{result.stored_role}, "
                f"expected {result.expected_total}/{result.expected_role}"
                + (
                    f", departed members: {', '.join(result.missing_members)}"
                    if result.missing_members else ""
                )
            )
    else:
        console.print("[bold green]✓ CONSISTENT[/bold green]")
    console.print(f"  Verification time: {elapsed:.3f}s")

    if verbose:
        console.print("\n[bold]Detailed Intent Listing:[/bold]")
        table = Table(show_lines=True)
        table.add_column("Key", style="cyan")
        table.add_column("Role", style="green")
        table.add_column("Total (stored/expected)", width=24)
        table.add_column("Role (stored/expected)", width=24)
        table.add_column("Executable", width=10)
        table.add_column("Status", width=10)

        for result in results:
            table.add_row(
                result.key,
                result.required_role or "—",
                f"{result.stored_total} / {result.expected_total}",
                f"{result.stored_role} / {result.expected_role}",
                "YES" if result.executable else "—",
                "ok" if result.is_consistent else "[red]drift[/red]",
            )
        console.print(table)

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return not drifted


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Recompute pending intent tallies against the current group config"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Intent store connection string (defaults to QUORUM_DATABASE_URL)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Group config JSON document (defaults to QUORUM_CONFIG_PATH)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed per-intent listing",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config or settings.config_path)
    except ConfigInvalid as exc:
        console.print(f"[bold red]✗ {escape(str(exc))}[/bold red]")
        sys.exit(1)

    store = SqlIntentStore(args.database_url or settings.database_url)
    store.initialize()
    is_valid = run_audit(store, config, verbose=args.verbose)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
