# commands.py

import click
from flask import current_app
from flask.cli import with_appcontext


@click.command('create-client')
@click.option('--company', prompt=True, help='Company name')
@click.option('--hypothesis', prompt=True, help='Why this journey should convert')
@click.option('--contact-name', default=None, help='Primary contact')
@click.option('--email', default=None, help='Contact email address')
@click.option('--token', default=None, help='Explicit client token, e.g. G1234')
@with_appcontext
def create_client(company, hypothesis, contact_name, email, token):
    """Create a client with its four journey pages"""
    result = current_app.services.get('client').create_client(
        company=company,
        contact_name=contact_name,
        email=email,
        hypothesis=hypothesis,
        token=token
    )

    if result.is_success:
        click.echo(f'Client created: {result.data.token} ({result.data.company})')
    else:
        click.echo(f'Failed to create client: {result.error}', err=True)
        raise SystemExit(1)


@click.command('process-correlation-retries')
@click.option('--limit', default=50, show_default=True, help='Maximum queue entries to process')
@with_appcontext
def process_correlation_retries(limit):
    """Retry failed correlations whose backoff has elapsed"""
    result = current_app.services.get('webhook_error_recovery').process_pending_retries(limit=limit)
    counts = result.data
    click.echo(f"Processed {counts['processed']}: {counts['succeeded']} succeeded, {counts['failed']} failed")


@click.command('webhook-stats')
@click.option('--hours', default=24, show_default=True, help='Look-back window in hours')
@with_appcontext
def webhook_stats(hours):
    """Show failed correlation queue and payment event statistics"""
    recovery_service = current_app.services.get('webhook_error_recovery')
    stats = recovery_service.get_failure_statistics(hours_back=hours).data

    for key, value in stats.items():
        click.echo(f'{key}: {value}')

    payment_counts = current_app.services.get('payment_event_repository').count_by_status()
    for status, count in sorted(payment_counts.items()):
        click.echo(f'payments_{status}: {count}')

    if recovery_service.should_send_failure_alert(stats):
        click.echo(recovery_service.generate_failure_alert_message(stats), err=True)


def init_app(app):
    """Register commands with the Flask app"""
    app.cli.add_command(create_client)
    app.cli.add_command(process_correlation_retries)
    app.cli.add_command(webhook_stats)
