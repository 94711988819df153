# /newsletter/cli.py
# Out-of-band administration: `flask users ...` and `flask init-db`.

import click
from flask.cli import AppGroup, with_appcontext
from sqlalchemy.exc import IntegrityError

from . import db
from .models import User
from .roles import ROLES, SUBSCRIBER

users_cli = AppGroup('users', help='Manage identities.')


@users_cli.command('create')
@click.argument('email')
@click.option('--role', type=click.Choice(ROLES), default=SUBSCRIBER, show_default=True)
@click.option('--name', default=None)
def create_user(email, role, name):
    """Create an identity. The role is fixed here and nowhere else."""
    email = email.strip()
    if User.find_by_email(email):
        raise click.ClickException(f'{email} already exists.')
    user = User(email=email, role=role, name=name)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f'{email} already exists.')
    click.echo(f'Created {user.role} {user.email} ({user.id})')


@users_cli.command('list')
def list_users():
    for u in User.query.order_by(User.created_at).all():
        totp_state = 'totp' if u.totp_enabled else 'no-totp'
        click.echo(f'{u.id}  {u.email}  {u.role}  {totp_state}')


@users_cli.command('reset-totp')
@click.argument('email')
def reset_totp(email):
    """Clear TOTP enrollment; the next sign-in goes through setup again."""
    user = User.find_by_email(email)
    if user is None:
        raise click.ClickException(f'{email} not found.')
    user.reset_totp()
    db.session.commit()
    click.echo(f'TOTP reset for {user.email}')


@click.command('init-db')
@with_appcontext
def init_db():
    """Create the database tables if they do not exist."""
    db.create_all()
    click.echo('Database ready.')


def register_cli(app):
    app.cli.add_command(users_cli)
    app.cli.add_command(init_db)
