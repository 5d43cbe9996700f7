"""Tests for the administration CLI."""
from click.testing import CliRunner

from aris.cli import cli
from aris.core.security import decode_session_token
from aris.db.models import Organization, SubscriptionPlan, User


def test_create_org_bootstraps_owner(db):
    runner = CliRunner()
    result = runner.invoke(
        cli, ["create-org", "--name", "Acme", "--slug", "acme", "--admin-email", "Owner@Acme.com"]
    )
    assert result.exit_code == 0, result.output
    assert "Created organization: Acme" in result.output

    db.expire_all()
    assert db.query(Organization).one().slug == "acme"
    owner = db.query(User).one()
    assert owner.email == "owner@acme.com"
    assert owner.membership.role == "owner"

    result = runner.invoke(
        cli, ["create-org", "--name", "Acme 2", "--slug", "acme-2", "--admin-email", "owner@acme.com"]
    )
    assert result.exit_code != 0
    assert "User already exists" in result.output


def test_create_org_rejects_bad_slug(db):
    result = CliRunner().invoke(
        cli, ["create-org", "--name", "Acme", "--slug", "Acme Corp!", "--admin-email", "a@acme.com"]
    )
    assert result.exit_code != 0
    assert "Slug must be" in result.output


def test_issue_token_and_revoke(db, test_user):
    runner = CliRunner()
    result = runner.invoke(cli, ["issue-token", "--email", test_user.email])
    assert result.exit_code == 0
    assert decode_session_token(result.output.strip())["sub"] == str(test_user.id)

    result = runner.invoke(cli, ["revoke-sessions", "--email", test_user.email])
    assert result.exit_code == 0
    db.refresh(test_user)
    assert test_user.token_version == 2


def test_unknown_user(db):
    result = CliRunner().invoke(cli, ["revoke-sessions", "--email", "ghost@nowhere.com"])
    assert result.exit_code != 0
    assert "User not found" in result.output


def test_seed_plans_and_platform_admin(db, test_user):
    runner = CliRunner()
    assert "Seeded 3" in runner.invoke(cli, ["seed-plans"]).output
    assert "Seeded 0" in runner.invoke(cli, ["seed-plans"]).output
    assert db.query(SubscriptionPlan).count() == 3

    result = runner.invoke(cli, ["create-platform-admin", "--email", test_user.email])
    assert result.exit_code == 0
    db.refresh(test_user)
    assert test_user.is_platform_admin is True
