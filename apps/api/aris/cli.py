"""CLI tools for ARIS administration."""

import click
from pydantic import ValidationError

from aris.core.security import create_session_token
from aris.db.enums import Role
from aris.db.models import Membership, User
from aris.db.session import SessionLocal
from aris.schemas.organization import OrganizationCreate
from aris.services import org_service, subscription_service


@click.group()
def cli():
    """ARIS CLI tools."""
    pass


def _get_user(db, email: str) -> User:
    user = db.query(User).filter(User.email == email.lower().strip()).first()
    if not user:
        raise click.ClickException(f"User not found: {email}")
    return user


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
@click.option("--admin-email", required=True, help="Owner email address")
def create_org(name: str, slug: str, admin_email: str):
    """
    Create organization with its owner account.

    This is the bootstrap command for setting up a new tenant.

    Example:
        python -m aris.cli create-org --name "Acme Corp" --slug "acme" --admin-email "admin@acme.com"
    """
    email = admin_email.lower().strip()
    try:
        data = OrganizationCreate(name=name, slug=slug.lower().strip())
    except ValidationError:
        raise click.ClickException("Slug must be lowercase letters, digits and hyphens")

    with SessionLocal() as db:
        if db.query(User).filter(User.email == email).first():
            raise click.ClickException(f"User already exists: {email}")
        try:
            org = org_service.create_org(db, data)
        except org_service.DuplicateSlugError as e:
            raise click.ClickException(str(e))

        user = User(email=email, display_name=email.split("@")[0])
        db.add(user)
        db.flush()
        db.add(Membership(user_id=user.id, organization_id=org.id, role=Role.OWNER.value))
        db.commit()

        click.echo(f"✓ Created organization: {org.name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {org.slug}")
        click.echo(f"✓ Created owner {email}")


@cli.command()
@click.option("--email", required=True, help="User email to mint a session token for")
def issue_token(email: str):
    """
    Print a session JWT for a user (for API clients and local testing).

    Example:
        python -m aris.cli issue-token --email "user@example.com"
    """
    with SessionLocal() as db:
        user = _get_user(db, email)
        if not user.membership:
            raise click.ClickException(f"User has no organization: {email}")
        token = create_session_token(
            user.id,
            user.membership.organization_id,
            user.membership.role,
            user.token_version,
        )
    click.echo(token)


@cli.command()
@click.option("--email", required=True, help="User email to revoke sessions for")
def revoke_sessions(email: str):
    """
    Revoke all sessions for a user by bumping their token_version.

    Example:
        python -m aris.cli revoke-sessions --email "user@example.com"
    """
    with SessionLocal() as db:
        user = _get_user(db, email)
        old_version = user.token_version
        user.token_version += 1
        db.commit()

        click.echo(f"✓ Revoked all sessions for {email}")
        click.echo(f"  Token version: {old_version} → {user.token_version}")


@cli.command()
def seed_plans():
    """Create the default subscription plans that do not exist yet."""
    with SessionLocal() as db:
        created = subscription_service.seed_default_plans(db)
    click.echo(f"✓ Seeded {created} subscription plan(s)")


@cli.command()
@click.option("--email", required=True, help="Existing user to promote")
def create_platform_admin(email: str):
    """Grant platform admin rights (access to /api/admin/*) to a user."""
    with SessionLocal() as db:
        user = _get_user(db, email)
        user.is_platform_admin = True
        db.commit()
    click.echo(f"✓ {email} is now a platform admin")


if __name__ == "__main__":
    cli()
