# cli.py
import json
import logging
import sys
from typing import Optional

import click
from pydantic import ValidationError

from webdeploy.backup import BackupManager
from webdeploy.deployer import Deployer, DeploymentResult
from webdeploy.exceptions import ArchiveNotFoundError, DeploymentError
from webdeploy.launcher import application_status, start_application, stop_application
from webdeploy.profiles import get_profile
from webdeploy.settings import Settings, get_settings, VALID_PROFILES, VALID_LOG_LEVELS
from webdeploy.state.deployment_state import DeploymentStateManager
from webdeploy.state.rollback_manager import RollbackManager

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _fail(message: str, hint: Optional[str] = None) -> None:
    click.echo(f"❌ {message}")
    if hint:
        click.echo(f"   {hint}")
    sys.exit(1)


@click.group()
@click.option("--base-dir", default=None, type=click.Path(file_okay=False),
              help="Directory holding the archive and the hosting directory "
                   "(.env is still read from the current directory)")
@click.option("--log-level", default=None,
              type=click.Choice(VALID_LOG_LEVELS, case_sensitive=False),
              help="Logging level")
@click.pass_context
def cli(ctx, base_dir, log_level):
    """Deploy pre-built web front ends to shared hosting"""
    overrides = {}
    if base_dir is not None:
        overrides["base_dir"] = base_dir
    if log_level is not None:
        overrides["log_level"] = log_level.upper()

    try:
        settings = get_settings()
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    if overrides:
        settings = settings.model_copy(update=overrides)

    _configure_logging(settings.log_level)
    ctx.obj = {"settings": settings}


def _print_success(settings: Settings, result: DeploymentResult) -> None:
    click.echo("")
    click.echo("🎉 Deployment completed successfully!")
    click.echo(f"   Site URL: {settings.site_url}")
    click.echo(f"   Deployment size: {result.size_mb}MB")
    for warning in result.warnings:
        click.echo(f"⚠️  {warning}")

    if result.launch is not None:
        deploy_dir = settings.deploy_dir
        click.echo(f"   Application log: {result.launch.log_file}")
        click.echo("")
        click.echo("📝 Management commands:")
        click.echo("   Check status: webdeploy status")
        click.echo(f"   View logs: tail -f {deploy_dir}/{settings.app_log_file}")
        click.echo("   Stop app: webdeploy stop")
        click.echo(f"   Restart: webdeploy start (or cd {deploy_dir} && ./start.sh)")
    elif result.profile == "static":
        click.echo("")
        click.echo("📝 Next steps:")
        click.echo("   1. Test the application in your browser")
        click.echo("   2. Configure video sources if needed")
        click.echo("   3. Set up your password for access")


@cli.command()
@click.option("--profile",
              type=click.Choice(VALID_PROFILES),
              default=None,
              help="Deployment profile (defaults to configuration)")
@click.option("--start/--no-start", default=True,
              help="Start the standalone server after deploying")
@click.option("--keep-archive/--remove-archive", default=None,
              help="Keep the deployment archive after a deployment")
@click.option("--json", "as_json", is_flag=True, help="Print the deployment result as JSON")
@click.pass_context
def deploy(ctx, profile, start, keep_archive, as_json):
    """Deploy the archive with backup, verification and rollback"""
    settings = _settings(ctx)
    if keep_archive is not None:
        settings = settings.model_copy(update={"keep_archive": keep_archive})

    if not as_json:
        click.echo(f"🎬 {settings.app_name} Deployment")
        click.echo("========================================")

    deployer = Deployer(settings)
    try:
        result = deployer.deploy(profile_name=profile, start=start)
    except ArchiveNotFoundError:
        _fail("Deployment archive not found in current directory",
              f"Please upload {settings.archive_name} first")
    except DeploymentError as e:
        if as_json and e.result is not None:
            click.echo(json.dumps(e.result.to_dict(), indent=2))
            sys.exit(1)
        click.echo("")
        click.echo(f"❌ Deployment failed: {e}")
        if e.result is not None and e.result.rolled_back:
            click.echo("   Rollback completed")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.launch is not None and not result.launch.success:
        click.echo("")
        click.echo("⚠️  Deployment completed but application failed to start")
        click.echo("   Files are deployed, check Node.js configuration")
        if result.launch.error:
            click.echo(f"   {result.launch.error}")
        click.echo(f"   Check log: tail -f {result.launch.log_file}")
        return

    _print_success(settings, result)


@cli.command("quick-deploy")
@click.pass_context
def quick_deploy(ctx):
    """Extract the archive straight into the hosting directory"""
    settings = _settings(ctx)
    click.echo(f"🚀 Quick Deploy {settings.app_name}")
    click.echo("=========================")

    try:
        Deployer(settings).quick_deploy()
    except ArchiveNotFoundError:
        _fail(f"{settings.archive_name} not found!",
              "Download it from the build artifacts first")
    except DeploymentError as e:
        _fail(f"Quick deploy failed: {e}")

    click.echo("✅ Deployment complete!")
    click.echo(f"   Site: {settings.site_url}")


@cli.command()
@click.option("--profile",
              type=click.Choice(VALID_PROFILES),
              default=None,
              help="Profile to verify against (defaults to configuration)")
@click.pass_context
def verify(ctx, profile):
    """Check the hosting directory for the expected files"""
    settings = _settings(ctx)
    deployer = Deployer(settings)

    try:
        resolved = get_profile(profile or settings.deployment_profile, settings.deploy_path)
        report = deployer.verify(resolved)
    except DeploymentError as e:
        _fail(str(e))

    click.echo(f"✅ Verifying {report.profile} deployment in {settings.deploy_dir}")
    for name in report.found:
        click.echo(f"   ✓ {name}")
    for name in report.missing_optional:
        click.echo(f"   ⚠️  {name} missing")
    for name in report.missing_required:
        click.echo(f"   ❌ {name} missing!")
    click.echo(f"   Final deployment size: {report.size_mb}MB")

    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show the rollback plan without running it")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def rollback(ctx, dry_run, yes):
    """Restore the hosting directory from the last backup"""
    settings = _settings(ctx)
    manager = RollbackManager(
        BackupManager(settings.deploy_path, settings.backup_path),
        DeploymentStateManager(settings.state_path),
        settings.pid_file,
    )

    plan = manager.create_rollback_plan()
    if isinstance(plan, dict):
        _fail(plan["error"])

    click.echo("Rollback Plan:")
    for step in plan:
        click.echo(f"  Priority {step['priority']}: {step['action']} - {step['target']}")

    if dry_run:
        return

    if not yes:
        click.confirm(f"This will replace the contents of {settings.deploy_dir}. Continue?", abort=True)

    results = manager.execute_rollback(dry_run=False)
    if results.get("failed"):
        for item in results["failed"]:
            click.echo(f"  {item['action']}: {item['target']} - {item.get('error', item.get('status'))}")
        _fail("Rollback failed")

    click.echo("🔄 Rollback completed")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the status as JSON")
@click.pass_context
def status(ctx, as_json):
    """Show the last deployment and the application process"""
    settings = _settings(ctx)
    state_manager = DeploymentStateManager(settings.state_path)
    state_manager.load_state()

    summary = state_manager.get_status_summary()
    summary["application"] = application_status(settings.deploy_path, settings)
    summary["backup"] = BackupManager(settings.deploy_path, settings.backup_path).describe()

    if as_json:
        click.echo(json.dumps(summary, indent=2))
        return

    click.echo(f"Deployment Status: {summary['status']}")
    if summary["status"] != "no_deployment":
        click.echo(f"Deployment ID: {summary['deployment_id']}")
        click.echo(f"Profile: {summary['profile']}")
        click.echo(f"Progress: {summary['progress']}")
        if summary.get("error"):
            click.echo(f"Error: {summary['error']}")
        click.echo("\nPhases:")
        for name, phase in summary["phases"].items():
            click.echo(f"  {name}: {phase['status']}")

    app = summary["application"]
    if app["pid"] is not None:
        state = "running" if app["running"] else "not running"
        click.echo(f"\nApplication: PID {app['pid']} ({state})")
    backup = summary["backup"]
    click.echo(f"Backup: {'present' if backup['exists'] else 'none'} ({backup['backup_dir']})")


@cli.command()
@click.pass_context
def start(ctx):
    """Start the standalone server in the hosting directory"""
    settings = _settings(ctx)
    click.echo(f"🚀 Starting {settings.app_name} application...")

    try:
        result = start_application(settings.deploy_path, settings)
    except DeploymentError as e:
        _fail(str(e))

    if not result.success:
        _fail(f"Application failed to start: {result.error}",
              f"Check log: tail -f {result.log_file}")

    click.echo(f"   Node.js version: {result.node_version}")
    click.echo(f"   Application started with PID: {result.pid}")
    click.echo(f"   Log file: {result.log_file}")
    click.echo("   ✅ Application is running successfully")
    click.echo(f"   Access URL: {settings.site_url}")


@cli.command()
@click.pass_context
def stop(ctx):
    """Stop the standalone server"""
    settings = _settings(ctx)
    try:
        stopped = stop_application(settings.deploy_path, settings)
    except DeploymentError as e:
        _fail(str(e))

    if stopped:
        click.echo("🛑 Application stopped")
    else:
        click.echo("Application is not running")


@cli.command("show-config")
@click.pass_context
def show_config(ctx):
    """Show current configuration"""
    settings = _settings(ctx)
    click.echo("Current Configuration:")
    for name, value in settings.model_dump().items():
        click.echo(f"  {name}: {value}")


@cli.command("clear-state")
@click.pass_context
def clear_state(ctx):
    """Remove the deployment state file"""
    settings = _settings(ctx)
    if DeploymentStateManager(settings.state_path).cleanup_state_file():
        click.echo("Deployment state cleared")
    else:
        click.echo("No deployment state found")


if __name__ == "__main__":
    cli()
