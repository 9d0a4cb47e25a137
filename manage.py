from colombus.app import create_app, db

from flask_migrate import Migrate
from flask.cli import FlaskGroup
import click
from sqlalchemy import func
from flask import current_app
from colombus.models import User


migrate = Migrate()


def create_colombus_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_colombus_app)


@cli.command("reset_quotas")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
def reset_quotas_cmd(yes: bool):
    """Yearly reset of every user's P1/P2 counters."""
    from colombus.services.quotas import reset_quotas

    if not yes:
        click.confirm("Reset P1/P2 usage for every user?", abort=True)
    count = reset_quotas()
    click.echo(f"Reset {count} users")


@cli.command("check_quotas")
@click.option("--fix", is_flag=True, help="Rewrite counters that drifted from their records")
@click.option("--include-archived", is_flag=True)
def check_quotas(fix: bool, include_archived: bool):
    from colombus.services.quotas import find_drift, repair_drift

    drift = find_drift(include_archived=include_archived)
    if not drift:
        click.echo("No drift")
        return
    for entry in drift:
        click.echo(
            f"{entry.email} user_id={entry.user_id}"
            f" p1={entry.actual.p1_used} expected={entry.expected.p1_used}"
            f" p2={entry.actual.p2_used} expected={entry.expected.p2_used}"
        )
    if fix:
        repaired = repair_drift(drift)
        click.echo(f"Repaired {repaired} users")
    current_app.logger.info(f"[QUOTA] check found={len(drift)} fixed={fix}")


@cli.command("archive_user")
@click.option("--email", "email", required=True)
@click.option("--actor", "actor_email", required=True, help="Email of the RH performing the archive")
def archive_user_cmd(email: str, actor_email: str):
    from colombus.services.archival import archive_user

    user = User.query.filter(func.lower(User.email) == email.lower()).one_or_none()
    actor = User.query.filter(func.lower(User.email) == actor_email.lower()).one_or_none()
    if not user or not actor:
        click.echo("Not found", err=True)
        return
    result = archive_user(actor, user.id)
    click.echo(
        f"Archived {email}: withdrawn={result.withdrawn_interests}"
        f" cancelled={result.cancelled_registrations}"
    )


if __name__ == "__main__":
    cli()
