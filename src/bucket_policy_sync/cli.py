"""Bucket policy sync CLI.

Operator tooling around the reconciliation engine.

Usage:
    bucket-policy-sync reconcile              # Reconcile every managed bucket
    bucket-policy-sync reconcile --dry-run    # Compute policies, write nothing
    bucket-policy-sync accounts               # Show the authorized account set
    bucket-policy-sync buckets                # Show managed buckets and regions
    bucket-policy-sync preview BUCKET         # Show the policy BUCKET would get
"""

from __future__ import annotations

import dataclasses
import json

import click

from .config import Config, ConfigurationError
from .discovery import BucketDiscoveryError
from .main import setup_logging
from .policy import MalformedPolicyError
from .reconciler import BucketStatus, Reconciler
from .registry import RegistryReadError
from .storage import PolicyFetchError, RegionalClientError


def load_config(**overrides: bool) -> Config:
    """Load configuration from the environment, applying CLI overrides.

    Raises:
        click.ClickException: If the configuration is invalid.
    """
    try:
        config = Config.from_env()
        if overrides:
            config = dataclasses.replace(config, **overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="bucket-policy-sync")
@click.option("--verbose", "-v", is_flag=True, help="Emit engine logs on stdout")
def cli(verbose: bool) -> None:
    """Keep bucket read access in sync with the customer registry.

    \b
    Configuration comes from the environment (REGISTRY_TABLE_NAME,
    BUCKET_PREFIX, POLICY_SID, AWS_REGION, ...).
    """
    if verbose:
        setup_logging(json_output=False)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Compute policies without writing them")
@click.option(
    "--continue-on-error",
    is_flag=True,
    help="Keep going after a bucket fails instead of aborting the run",
)
def reconcile(dry_run: bool, continue_on_error: bool) -> None:
    """Reconcile the managed statement on every managed bucket."""
    overrides: dict[str, bool] = {}
    if dry_run:
        overrides["dry_run"] = True
    if continue_on_error:
        overrides["fail_fast"] = False
    config = load_config(**overrides)

    result = Reconciler(config).reconcile_once()

    for outcome in result.outcomes:
        line = f"{outcome.bucket} ({outcome.region}): {outcome.status.value}"
        if outcome.status == BucketStatus.FAILED:
            click.secho(f"✗ {line}: {outcome.error}", fg="red")
        else:
            click.echo(f"  {line}")

    if not result.success:
        raise click.ClickException(f"Reconciliation failed: {result.error}")

    click.secho(
        f"✓ Reconciled {len(result.outcomes)} bucket(s) for {result.account_count} account(s)",
        fg="green",
    )


@cli.command()
def accounts() -> None:
    """Print the authorized account identifiers."""
    config = load_config()
    try:
        account_ids = Reconciler(config).resolve_accounts()
    except RegistryReadError as e:
        raise click.ClickException(str(e)) from e

    for account_id in sorted(account_ids):
        click.echo(account_id)


@cli.command()
def buckets() -> None:
    """Print managed buckets with their derived regions."""
    config = load_config()
    try:
        managed = Reconciler(config).discover_buckets()
    except BucketDiscoveryError as e:
        raise click.ClickException(str(e)) from e

    for bucket in managed:
        click.echo(f"{bucket.name}\t{bucket.region}")


@cli.command()
@click.argument("bucket")
@click.option("--region", help="Bucket region (default: derived from the bucket name)")
def preview(bucket: str, region: str | None) -> None:
    """Print the policy BUCKET would receive, without writing it."""
    config = load_config()
    try:
        document = Reconciler(config).preview(bucket, region=region)
    except (
        RegistryReadError,
        RegionalClientError,
        PolicyFetchError,
        MalformedPolicyError,
    ) as e:
        raise click.ClickException(str(e)) from e

    click.echo(json.dumps(document.to_dict(), indent=2))


if __name__ == "__main__":
    cli()
