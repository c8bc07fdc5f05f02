"""Common CLI options for the CLI."""

from pathlib import Path

import typer

TenantOpt = typer.Option(
    None,
    "--tenant",
    "-t",
    help="Azure tenant id (prompted when several are available)",
)

SubscriptionOpt = typer.Option(
    None,
    "--subscription",
    "-s",
    help="Azure subscription id (prompted when several are available)",
)

JobOpt = typer.Option(
    1,
    "--job",
    "-j",
    help="Job (student) number; selects the resource group and network",
)

ForceLoginOpt = typer.Option(
    False,
    "--force-login",
    help="Always sign in interactively instead of reusing cached credentials",
)

LocationOpt = typer.Option(
    None,
    "--location",
    "-l",
    help="Azure region (defaults to IMGOPS_LOCATION or westeurope)",
)

ResourceGroupOpt = typer.Option(
    None,
    "--resource-group",
    "-g",
    help="Override the derived resource group name",
)

PrefixOpt = typer.Option(
    None,
    "--prefix",
    help="Resource name prefix (defaults to IMGOPS_PREFIX or 'lab')",
)

TemplateOpt = typer.Option(
    None,
    "--template",
    help="ARM template to deploy instead of the bundled one",
    exists=True,
    dir_okay=False,
    path_type=Path,
)

CustomizeScriptOpt = typer.Option(
    None,
    "--customize-script",
    help="PowerShell customization script instead of the bundled one",
    exists=True,
    dir_okay=False,
    path_type=Path,
)

LogDirOpt = typer.Option(
    None,
    "--log-dir",
    help="Directory for the session log (defaults to IMGOPS_LOG_DIR or ./logs)",
    file_okay=False,
    path_type=Path,
)

TimestampOpt = typer.Option(
    None,
    "--timestamp",
    help="Build timestamp (YYYYMMDDHHMMSS) of an earlier build",
)

ConfirmOpt = typer.Option(
    True,
    "--confirm/--no-confirm",
    help="Ask for confirmation before creating resources",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Show what would be done, but don't create or delete anything",
)
