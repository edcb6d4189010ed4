# Overview: Flask CLI command groups for bootstrap, tenant data, and QR token operations.

# backend/loyalty_qr/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use 'flask db upgrade' for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant data (MULTI-TENANT):
# - python -m flask restaurants list
# - python -m flask restaurants create --name "Trattoria" --code "TRAT"
# - python -m flask customers create --restaurant-id <id> --first-name Ana --last-name Diaz --email ana@example.com
# - python -m flask rewards create --restaurant-id <id> --name "Free coffee" --points-cost 100
#
# QR tokens:
# - python -m flask qr issue-customer --restaurant-id <id> --customer-id <id> [--ttl 5] [--png out.png]
# - python -m flask qr issue-redemption --restaurant-id <id> --customer-id <id> --reward-id <id> [--ttl 10]
# - python -m flask qr verify <qr_data>
#   Verify AND consume a QR code (the token cannot be used again).
# - python -m flask qr cleanup-expired --restaurant-id <id> | --all
# - python -m flask qr scan --restaurant-id <id> [--mode redemption] [--verify-url http://host:5000] [--camera-index 0]
#   Open a camera and scan until one QR code is accepted (Ctrl+C to give up).

import threading

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Restaurant, Customer
from .services import qr_token_service, qr_image_service, tenant_service
from .services.qr_token_service import QRTokenIssueError
from .services.scan_rules import SCAN_MODES, MODE_CUSTOMER
from .services.tenant_service import NotFoundError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('restaurants')
def restaurants_group():
    """Restaurant (tenant) management commands."""


@restaurants_group.command('list')
@with_appcontext
def list_restaurants():
    """List all restaurants."""
    restaurants = tenant_service.list_restaurants()

    if not restaurants:
        click.echo("No restaurants found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<38} {'Name':<30} {'Code':<12} {'Active':<8} {'Customers'}")
    click.echo("="*100)

    for restaurant in restaurants:
        customer_count = db.session.query(Customer).filter_by(restaurant_id=restaurant.id).count()
        active_str = "Yes" if restaurant.is_active else "No"
        click.echo(f"{restaurant.id:<38} {restaurant.name:<30} {restaurant.code or '-':<12} {active_str:<8} {customer_count}")

    click.echo("="*100 + "\n")


@restaurants_group.command('create')
@click.option('--name', required=True, help='Restaurant name')
@click.option('--code', help='Short code (unique)')
@with_appcontext
def create_restaurant_cli(name, code):
    """Create a new restaurant (tenant)."""
    if code:
        existing = db.session.query(Restaurant).filter_by(code=code).first()
        if existing:
            click.echo(f"FAIL Restaurant with code '{code}' already exists")
            return

    restaurant = tenant_service.create_restaurant(name, code)
    click.echo(f"PASS Created restaurant: {restaurant.name} (ID: {restaurant.id})")


@click.group('customers')
def customers_group():
    """Customer management commands."""


@customers_group.command('create')
@click.option('--restaurant-id', required=True, help='Restaurant ID')
@click.option('--first-name', required=True)
@click.option('--last-name', required=True)
@click.option('--email')
@click.option('--phone')
@with_appcontext
def create_customer_cli(restaurant_id, first_name, last_name, email, phone):
    """Create a customer inside a restaurant."""
    try:
        customer = tenant_service.create_customer(restaurant_id, first_name, last_name, email=email, phone=phone)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created customer: {customer.first_name} {customer.last_name} (ID: {customer.id})")


@click.group('rewards')
def rewards_group():
    """Reward management commands."""


@rewards_group.command('create')
@click.option('--restaurant-id', required=True, help='Restaurant ID')
@click.option('--name', required=True)
@click.option('--points-cost', type=int, default=0, show_default=True)
@click.option('--description')
@with_appcontext
def create_reward_cli(restaurant_id, name, points_cost, description):
    """Create a redeemable reward inside a restaurant."""
    try:
        reward = tenant_service.create_reward(restaurant_id, name, points_cost=points_cost, description=description)
    except (NotFoundError, ValueError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created reward: {reward.name} (ID: {reward.id})")


@click.group('qr')
def qr_group():
    """QR token issuance, verification and cleanup."""


def _echo_issued(qr_data: str, png_path: str | None) -> None:
    click.echo(qr_data)
    if png_path:
        with open(png_path, "wb") as fh:
            fh.write(qr_image_service.render_qr_png(qr_data))
        click.echo(f"PASS QR image written to {png_path}")


@qr_group.command('issue-customer')
@click.option('--restaurant-id', required=True)
@click.option('--customer-id', required=True)
@click.option('--ttl', type=int, default=None, help='Minutes until expiry')
@click.option('--png', 'png_path', type=click.Path(dir_okay=False), help='Also write the QR code as PNG')
@with_appcontext
def issue_customer_cli(restaurant_id, customer_id, ttl, png_path):
    """Issue a customer-identification QR code."""
    if ttl is None:
        ttl = current_app.config["QR_CUSTOMER_TTL_MINUTES"]
    try:
        tenant_service.require_restaurant(restaurant_id)
        tenant_service.require_customer_in_restaurant(customer_id, restaurant_id)
        qr_data = qr_token_service.generate_customer_qr_token(restaurant_id, customer_id, expires_in_minutes=ttl)
    except (NotFoundError, ValueError, QRTokenIssueError) as e:
        raise click.ClickException(str(e))
    _echo_issued(qr_data, png_path)


@qr_group.command('issue-redemption')
@click.option('--restaurant-id', required=True)
@click.option('--customer-id', required=True)
@click.option('--reward-id', required=True)
@click.option('--ttl', type=int, default=None, help='Minutes until expiry')
@click.option('--png', 'png_path', type=click.Path(dir_okay=False), help='Also write the QR code as PNG')
@with_appcontext
def issue_redemption_cli(restaurant_id, customer_id, reward_id, ttl, png_path):
    """Issue a reward-redemption QR code."""
    if ttl is None:
        ttl = current_app.config["QR_REDEMPTION_TTL_MINUTES"]
    try:
        tenant_service.require_restaurant(restaurant_id)
        tenant_service.require_customer_in_restaurant(customer_id, restaurant_id)
        tenant_service.require_reward_in_restaurant(reward_id, restaurant_id)
        qr_data = qr_token_service.generate_redemption_qr_token(
            restaurant_id, customer_id, reward_id, expires_in_minutes=ttl
        )
    except (NotFoundError, ValueError, QRTokenIssueError) as e:
        raise click.ClickException(str(e))
    _echo_issued(qr_data, png_path)


@qr_group.command('verify')
@click.argument('qr_data')
@with_appcontext
def verify_cli(qr_data):
    """Verify AND consume a QR code."""
    result = qr_token_service.verify_and_consume_token(qr_data)
    if result.valid:
        payload = result.payload
        click.echo(f"PASS Customer {payload['customerId']} at restaurant {payload['restaurantId']}")
        if payload.get("rewardId"):
            click.echo(f"     Reward {payload['rewardId']}")
    else:
        raise click.ClickException(result.error)


@qr_group.command('cleanup-expired')
@click.option('--restaurant-id', help='Restaurant ID')
@click.option('--all', 'all_restaurants', is_flag=True, help='Sweep every restaurant')
@with_appcontext
def cleanup_expired_cli(restaurant_id, all_restaurants):
    """Delete expired QR tokens, used or not."""
    if not restaurant_id and not all_restaurants:
        raise click.UsageError("Pass --restaurant-id or --all")

    if all_restaurants:
        restaurant_ids = [r.id for r in tenant_service.list_restaurants()]
    else:
        restaurant_ids = [restaurant_id]

    total = 0
    for rid in restaurant_ids:
        total += qr_token_service.cleanup_expired_tokens(rid)

    click.echo(f"PASS Deleted {total} expired QR tokens")


@qr_group.command('scan')
@click.option('--restaurant-id', required=True)
@click.option('--mode', type=click.Choice(SCAN_MODES), default=MODE_CUSTOMER, show_default=True)
@click.option('--verify-url', help='Verify against a remote API instead of the local database')
@click.option('--camera-index', type=int, default=None, help='Use this camera instead of probing')
@with_appcontext
def scan_cli(restaurant_id, mode, verify_url, camera_index):
    """Scan QR codes with a local camera until one is accepted."""
    from .scanner import (
        HTTPVerifier, LocalVerifier, OpenCVCamera, QRScanner, ScanConfig, ScannerState,
    )

    app = current_app._get_current_object()
    verifier = HTTPVerifier(verify_url) if verify_url else LocalVerifier(app)
    indexes = [camera_index] if camera_index is not None else None
    camera = OpenCVCamera(indexes=indexes, facing_modes={camera_index: "environment"} if indexes else None)

    done = threading.Event()
    outcome = {}

    def on_scan_success(customer_id, rid, payload):
        outcome.update(customer_id=customer_id, restaurant_id=rid, payload=payload)
        done.set()

    def on_state_change(state, message):
        if message:
            click.echo(f"[{state.value}] {message}")
        if state is ScannerState.ERROR:
            outcome["error"] = message
            done.set()

    scanner = QRScanner(
        restaurant_id,
        on_scan_success,
        done.set,
        verifier=verifier,
        camera=camera,
        mode=mode,
        config=ScanConfig.from_app_config(app.config),
        on_state_change=on_state_change,
    )

    try:
        with scanner:
            click.echo("Position QR code within the camera frame (Ctrl+C to stop)")
            done.wait()
    except KeyboardInterrupt:
        click.echo("\nScan cancelled")
    finally:
        if isinstance(verifier, HTTPVerifier):
            verifier.close()

    if "error" in outcome:
        raise click.ClickException(outcome["error"])
    if "customer_id" in outcome:
        click.echo(f"PASS Customer {outcome['customer_id']} at restaurant {outcome['restaurant_id']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(restaurants_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(rewards_group)
    app.cli.add_command(qr_group)
