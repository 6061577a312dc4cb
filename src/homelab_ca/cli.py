from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from .authorities import issue_intermediate_ca, issue_root_ca, issue_trust_anchor
from .certificates import issue_certificate
from .config import Settings, load_settings, parse_yes_no
from .database import SerialDatabase
from .errors import CAError
from .initialize import initialize_layout
from .layout import Layout
from .log import configure_logging
from .models import CertificateRole, CheckResult, IssuanceResult, KeyAlgorithm, LeafRequest, SanAlias
from .verify import describe_certificate, verify_certificate_chain

app = typer.Typer(help="Manage a small private CA hierarchy: trusted identity, root CA, intermediate CA and leaf certificates.")


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _layout(ctx: typer.Context) -> Layout:
    return Layout(_settings(ctx).base_dir)


def _fail(message: str) -> None:
    typer.echo(f"[ERROR] {message}", err=True)
    raise typer.Exit(code=1)


def _confirm_callback(assume_yes: bool):
    """Build the overwrite confirmation used by the Issuance Guard."""
    def confirm(lines: list[str]) -> str:
        for line in lines:
            typer.echo(f"[WARNING] {line}", err=True)
        if assume_yes:
            return "yes"
        return typer.prompt("Do you want to continue? (yes/no)", default="", show_default=False)
    return confirm


def _section(title: str) -> None:
    typer.echo("")
    typer.secho(f"=== {title} ===", fg=typer.colors.CYAN)


def _print_check(check: CheckResult, verbose: bool = False) -> None:
    if check.passed:
        status = typer.style("[ PASS ]", fg=typer.colors.GREEN)
    else:
        status = typer.style("[ FAIL ]", fg=typer.colors.RED)
    line = f"{check.cert_path}: {status}"
    if not check.passed and check.reason:
        line += f" ({check.reason})"
    typer.echo(line)
    if verbose and check.detail:
        typer.echo(f"Verbose output: {check.detail}")


def _report(result: IssuanceResult) -> None:
    """Print checks and exports; exit 1 if any verification failed."""
    _section("Verify Certificates")
    for check in result.checks:
        _print_check(check)
    if result.exports:
        _section("Convert Certificate Formats")
        for p in result.exports:
            typer.secho(f"--> {p.name}", fg=typer.colors.CYAN)
    typer.echo("")
    if not result.verified:
        _fail("Verification failed for one or more certificates")
    typer.secho(f"{result.name} issued (serial {result.serial:x}).", fg=typer.colors.CYAN)


@app.callback()
def main_callback(
    ctx: typer.Context,
    home: Optional[str] = typer.Option(None, "--home", help="Base directory (default: $HOMELAB_CA_HOME or ~/ssl)"),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity"),
):
    """Resolve settings and configure logging for every command."""
    settings = load_settings(home)
    ctx.obj = settings
    configure_logging(verbose, Layout(settings.base_dir).log_dir, settings.log_level)


@app.command("init")
def init(
    ctx: typer.Context,
    unique_subject: Optional[str] = typer.Option(None, "--unique-subject", help="yes|no, written to a new index.txt.attr"),
    templates: Optional[str] = typer.Option(None, "--templates", help="Directory with role profile templates"),
):
    """Create the directory layout, databases and role profiles (idempotent)."""
    settings = _settings(ctx)
    try:
        unique = parse_yes_no(unique_subject) if unique_subject is not None else settings.unique_subject_default
    except ValueError as e:
        raise typer.BadParameter(str(e))
    layout = initialize_layout(
        settings.base_dir,
        unique_subject=unique,
        template_dir=templates or settings.template_dir,
    )
    configure_logging(0, layout.log_dir, settings.log_level)
    typer.secho(f"SSL directory setup completed successfully at {layout.base}.", fg=typer.colors.CYAN)


@app.command("unique-subject")
def unique_subject_cmd(
    ctx: typer.Context,
    value: Optional[str] = typer.Argument(None, help="yes|no; omit to show the current policy"),
):
    """Show or change the unique_subject policy."""
    layout = _layout(ctx)
    try:
        layout.require_initialized()
    except CAError as e:
        _fail(str(e))
    db = SerialDatabase(layout.db_dir)
    if value is not None:
        try:
            db.set_unique_subject(parse_yes_no(value))
        except ValueError as e:
            raise typer.BadParameter(str(e))
    typer.echo(f"unique_subject = {'yes' if db.unique_subject else 'no'}")


def _run_issuer(func, ctx: typer.Context, assume_yes: bool) -> None:
    try:
        result = func(_layout(ctx), confirm=_confirm_callback(assume_yes))
    except CAError as e:
        _fail(str(e))
    _report(result)


@app.command("trusted-id")
def trusted_id(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Confirm overwriting an existing Trusted ID"),
):
    """Create the self-signed trusted identity."""
    _run_issuer(issue_trust_anchor, ctx, yes)


@app.command("root-ca")
def root_ca(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Confirm overwriting an existing Root CA"),
):
    """Create the root CA, signed by the trusted identity."""
    _run_issuer(issue_root_ca, ctx, yes)


@app.command("intermediate-ca")
def intermediate_ca(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Confirm overwriting an existing Intermediate CA"),
):
    """Create the intermediate CA, signed by the root CA."""
    _run_issuer(issue_intermediate_ca, ctx, yes)


@app.command("cert")
def cert(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="FQDN (server) or name (client) of the new certificate"),
    role: CertificateRole = typer.Option(CertificateRole.SERVER, "--role", help="server or client"),
    algorithm: KeyAlgorithm = typer.Option(KeyAlgorithm.ECDSA, "--algorithm", help="ecdsa (P-384) or rsa"),
    ip: Optional[str] = typer.Option(None, "--ip", help="IPv4 address, e.g. ', IP:192.168.1.10' (server only)"),
    alias: SanAlias = typer.Option(SanAlias.WWW, "--alias", help="Second DNS name: www, wildcard or none (server only)"),
    dns: list[str] = typer.Option([], "--dns", help="Additional DNS name (ECDSA client only, repeatable)"),
    yes: bool = typer.Option(False, "--yes", help="Confirm overwriting an existing certificate"),
):
    """Issue a server or client certificate signed by the intermediate CA."""
    if not role.is_leaf:
        raise typer.BadParameter("--role must be server or client")
    interactive = name is None
    if interactive:
        name = typer.prompt("Enter the FQDN name of the new certificate")
    if interactive and role is CertificateRole.SERVER and ip is None:
        ip = typer.prompt(
            "Enter the IPv4 address of the new certificate (syntax: , IP:192.168.x.x)",
            default="",
            show_default=False,
        )

    req = LeafRequest(
        name=name,
        role=role,
        algorithm=algorithm,
        ipv4=ip or None,
        alias=alias,
        dns_names=tuple(dns),
    )
    try:
        result = issue_certificate(_layout(ctx), req, confirm=_confirm_callback(yes))
    except CAError as e:
        _fail(str(e))
    _report(result)


@app.command("verify")
def verify(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Certificate to verify, e.g. trusted_id, root_ca, ca or localhost"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Show the chain walk for every check"),
):
    """Verify a certificate and its ancestors. Always exits 0."""
    if not name:
        name = typer.prompt("Enter the name of the certificate to verify")
    for check in verify_certificate_chain(_layout(ctx), name, verbose=verbose):
        _section(check.title)
        _print_check(check, verbose)


@app.command("show")
def show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Certificate to print"),
):
    """Print a text dump of a certificate."""
    try:
        typer.echo(describe_certificate(_layout(ctx), name))
    except FileNotFoundError as e:
        _fail(str(e))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
