"""CLI tools for LifeLink administration."""

import click
from pydantic import ValidationError as SchemaValidationError

from lifelink.core.async_utils import run_async
from lifelink.core.config import settings
from lifelink.core.encryption import assert_encryption_configured, generate_key
from lifelink.core.errors import LifeLinkError
from lifelink.db.models import Organization
from lifelink.db.session import SessionLocal
from lifelink.schemas.push_config import PushConfigUpdate
from lifelink.services import notification_service, push_config_service, requisition_service


@click.group()
def cli():
    """LifeLink CLI tools."""
    pass


def _get_org(db, tenant_code: str) -> Organization | None:
    org = db.query(Organization).filter(Organization.tenant_code == tenant_code.strip()).first()
    if not org:
        click.echo(f"❌ Organization not found: {tenant_code}")
    return org


def _require_key() -> bool:
    try:
        assert_encryption_configured()
    except RuntimeError as e:
        click.echo(f"❌ {e}")
        return False
    return True


@cli.command("generate-key")
def generate_key_command():
    """
    Print a new PUSH_ENCRYPTION_KEY (AES-256, hex encoded).

    Example:
        python -m lifelink.cli generate-key
    """
    click.echo(generate_key())


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--tenant-code", required=True, help="Unique tenant code")
def create_org(name: str, tenant_code: str):
    """
    Create a tenant organization.

    Example:
        python -m lifelink.cli create-org --name "City Alumni" --tenant-code "city"
    """
    db = SessionLocal()
    try:
        tenant_code = tenant_code.strip().lower()
        existing = db.query(Organization).filter(Organization.tenant_code == tenant_code).first()
        if existing:
            click.echo(f"❌ Organization with tenant code '{tenant_code}' already exists")
            return

        org = Organization(name=name, tenant_code=tenant_code)
        db.add(org)
        db.commit()
        click.echo(f"✓ Created organization: {name}")
        click.echo(f"  ID: {org.id}")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--tenant-code", required=True, help="Tenant code")
@click.option("--project-id", required=True, help="Firebase project ID")
@click.option("--client-email", required=True, help="Service account client email")
@click.option(
    "--private-key-file",
    type=click.File("r"),
    default=None,
    help="PEM file with the service account private key (omit to keep the stored key)",
)
@click.option("--icon", default=None, help="Default notification icon URL")
@click.option("--badge", default=None, help="Default notification badge URL")
@click.option("--sound", default=None, help="Default notification sound")
@click.option("--daily-limit", type=int, default=None, help="Daily push quota")
@click.option("--monthly-limit", type=int, default=None, help="Monthly push quota")
def save_push_config(
    tenant_code: str,
    project_id: str,
    client_email: str,
    private_key_file,
    icon: str | None,
    badge: str | None,
    sound: str | None,
    daily_limit: int | None,
    monthly_limit: int | None,
):
    """
    Store a tenant's push credentials (encrypted). The config starts inactive.

    Example:
        python -m lifelink.cli save-push-config --tenant-code city \\
            --project-id city-app --client-email fcm@city-app.iam.gserviceaccount.com \\
            --private-key-file key.pem
    """
    if not _require_key():
        return
    try:
        data = PushConfigUpdate(
            project_id=project_id,
            client_email=client_email,
            private_key=private_key_file.read() if private_key_file else None,
            default_icon=icon,
            default_badge=badge,
            default_sound=sound,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
        )
    except SchemaValidationError as e:
        click.echo(f"❌ Invalid push config: {e.errors()[0]['msg']}")
        return

    db = SessionLocal()
    try:
        org = _get_org(db, tenant_code)
        if not org:
            return
        config = push_config_service.save_push_config(db, org.id, data)
        click.echo(f"✓ Saved push config for {tenant_code}")
        click.echo(f"  Configured: {config.is_configured}")
        click.echo("→ Run test-push-config to verify and activate")
    except LifeLinkError as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--tenant-code", required=True, help="Tenant code")
def show_push_config(tenant_code: str):
    """Show a tenant's push config with secrets masked."""
    db = SessionLocal()
    try:
        org = _get_org(db, tenant_code)
        if not org:
            return
        config = push_config_service.get_push_config(db, org.id)
        if not config:
            click.echo(f"No push config for {tenant_code}")
            return
        for key, value in config.model_dump().items():
            click.echo(f"  {key}: {value}")
    finally:
        db.close()


@cli.command()
@click.option("--tenant-code", required=True, help="Tenant code")
def test_push_config(tenant_code: str):
    """Verify stored credentials; activates the config on success."""
    if not _require_key():
        return
    db = SessionLocal()
    try:
        org = _get_org(db, tenant_code)
        if not org:
            return
        ok = run_async(
            lambda: push_config_service.test_push_config(db, org.id),
            timeout=settings.PUSH_SEND_TIMEOUT_SECONDS * 3,
        )
        if ok:
            click.echo(f"✓ Push credentials verified; config active for {tenant_code}")
        else:
            click.echo(f"❌ Push credentials failed verification; config inactive for {tenant_code}")
    except LifeLinkError as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--tenant-code", required=True, help="Tenant code")
@click.option("--active/--inactive", default=True, help="Enable or disable tenant push")
def set_push_config_active(tenant_code: str, active: bool):
    """Enable or disable a tenant's own push credentials."""
    db = SessionLocal()
    try:
        org = _get_org(db, tenant_code)
        if not org:
            return
        push_config_service.set_push_config_active(db, org.id, active)
        click.echo(f"✓ Push config {'activated' if active else 'deactivated'} for {tenant_code}")
    except LifeLinkError as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
def expire_requisitions():
    """Expire every active requisition past its expiry time."""
    db = SessionLocal()
    try:
        count = requisition_service.expire_overdue_requisitions(db)
        click.echo(f"✓ Expired {count} requisitions")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--days", type=int, default=None, help="Retention window in days")
def cleanup_notifications(days: int | None):
    """Delete old read or expired notifications."""
    db = SessionLocal()
    try:
        count = notification_service.cleanup_old_notifications(db, days)
        click.echo(f"✓ Deleted {count} notifications")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
