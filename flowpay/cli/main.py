"""CLI interface for FlowPay."""

import asyncio
import json
import logging
import sys
from datetime import datetime
from decimal import Decimal
from typing import Any

import click
from sqlalchemy import func

from flowpay import __version__
from flowpay.config import get_settings, load_env_or_exit
from flowpay.execution.errors import IntentValidationError
from flowpay.execution.gateways import NotificationType
from flowpay.execution.intents import (
    Frequency,
    Intent,
    IntentCreate,
    IntentPatch,
    IntentStatus,
    format_amount,
)
from flowpay.execution.store import IntentStore
from flowpay.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """FlowPay - recurring conditional payment executor."""
    if any(arg in ("-h", "--help") for arg in sys.argv[1:]):
        return

    # Load .env and fail fast if missing/incomplete
    load_env_or_exit()


def _session_factory():
    from flowpay.data.storage import init_db

    return init_db()


def _build_runtime(session_factory) -> dict[str, Any]:
    """Wire store, gateways, notifier and executor from settings."""
    from flowpay.data.chain_client import ChainGateway
    from flowpay.data.payout_client import PayoutGateway
    from flowpay.execution.executor import IntentExecutor
    from flowpay.services.notifier import NotificationService

    store = IntentStore(session_factory)
    payout = PayoutGateway()
    notifier = NotificationService(session_factory)
    executor = IntentExecutor(
        store=store,
        chain=ChainGateway(),
        payout=payout,
        notifier=notifier,
    )
    return {"store": store, "payout": payout, "notifier": notifier, "executor": executor}


async def _close_runtime(runtime: dict[str, Any]) -> None:
    await runtime["payout"].close()
    await runtime["notifier"].close()


@cli.command()
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override FLOWPAY_LOG_LEVEL",
)
def run(log_level: str | None) -> None:
    """Run the execution loop until interrupted (Ctrl+C)."""
    setup_logging(log_level)
    from flowpay.services.scheduler import ExecutionScheduler

    settings = get_settings()
    runtime = _build_runtime(_session_factory())
    scheduler = ExecutionScheduler(runtime["executor"])

    click.echo("=" * 60)
    click.echo("FlowPay execution loop")
    click.echo("=" * 60)
    click.echo(f"Tick interval:   {settings.tick_interval_seconds}s")
    click.echo(f"Concurrency:     {settings.max_concurrent_executions}")
    click.echo(f"On-chain:        {'enabled' if settings.onchain_execution_enabled else 'DISABLED'}")
    click.echo(f"Off-ramp payout: {'enabled' if settings.payout_enabled else 'DISABLED'}")
    click.echo("Press Ctrl+C to stop")
    click.echo("=" * 60)

    async def _main() -> None:
        try:
            await scheduler.run()
        finally:
            await _close_runtime(runtime)

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Interrupted; execution loop stopped")
        click.echo("\nStopped.")


@cli.command()
def tick() -> None:
    """Run a single tick and print its summary as JSON."""
    setup_logging()
    runtime = _build_runtime(_session_factory())

    async def _main() -> dict[str, Any]:
        try:
            return await runtime["executor"].tick()
        finally:
            await _close_runtime(runtime)

    summary = asyncio.run(_main())
    click.echo(json.dumps(summary, indent=2))


@cli.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
def status(json_output: bool) -> None:
    """Show intent counts by status and the most recent executions."""
    setup_logging()
    from flowpay.data.storage import ExecutionDB, IntentDB, get_session

    settings = get_settings()
    _session_factory()
    db_session = get_session()
    try:
        counts = {
            s: int(n)
            for s, n in db_session.query(IntentDB.status, func.count(IntentDB.id))
            .group_by(IntentDB.status)
            .all()
        }
        recent = (
            db_session.query(ExecutionDB)
            .order_by(ExecutionDB.executed_at.desc())
            .limit(10)
            .all()
        )
        payload = {
            "onchain_execution_enabled": settings.onchain_execution_enabled,
            "payout_enabled": settings.payout_enabled,
            "tick_interval_seconds": settings.tick_interval_seconds,
            "intents": {s.value: counts.get(s.value, 0) for s in IntentStatus},
            "recent_executions": [
                {
                    "intent_id": e.intent_id,
                    "status": e.status,
                    "executed_at": e.executed_at.isoformat(),
                    "reference": e.tx_hash or e.payout_id,
                    "detail": e.error_message or e.delay_reason,
                }
                for e in recent
            ],
        }
    finally:
        db_session.close()

    if json_output:
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo("\n=== FlowPay Status ===")
    click.echo(f"On-chain execution: {'enabled' if payload['onchain_execution_enabled'] else 'disabled'}")
    click.echo(f"Off-ramp payout:    {'enabled' if payload['payout_enabled'] else 'disabled'}")
    click.echo("\nIntents:")
    for name, n in payload["intents"].items():
        click.echo(f"  {name:<10} {n}")
    click.echo("\nRecent executions:")
    if not payload["recent_executions"]:
        click.echo("  (none)")
    for e in payload["recent_executions"]:
        click.echo(
            f"  {e['executed_at']}  {e['intent_id'][:8]}  {e['status']:<8} "
            f"{e['reference'] or e['detail'] or ''}"
        )


@cli.command(name="db")
@click.argument("action", type=click.Choice(["init"]))
def db_command(action: str) -> None:
    """Database management commands.

    Actions:
        init - Initialize database tables
    """
    setup_logging()
    click.echo("Initializing database...")
    try:
        _session_factory()
        click.echo("✓ Database initialized successfully")
    except Exception as e:
        click.echo(f"ERROR: {e}")
        raise SystemExit(1)


# ----------------------------------------------------------------------
# users
# ----------------------------------------------------------------------


@cli.group()
def users() -> None:
    """Manage intent owners."""


@users.command(name="add")
@click.argument("wallet_address")
@click.option("--telegram-chat-id", default=None, help="Telegram chat id for notifications")
def users_add(wallet_address: str, telegram_chat_id: str | None) -> None:
    """Register an owner by wallet address."""
    setup_logging()
    store = IntentStore(_session_factory())
    try:
        owner = store.add_user(wallet_address, telegram_chat_id=telegram_chat_id)
    except Exception as e:
        click.echo(f"ERROR: {e}")
        raise SystemExit(1)
    click.echo(owner.id)


# ----------------------------------------------------------------------
# intents
# ----------------------------------------------------------------------


@cli.group()
def intents() -> None:
    """Manage payment intents."""


@intents.command(name="create")
@click.option("--owner", "owner_id", required=True, help="Owner user id")
@click.option("--amount", required=True, type=str, help="Amount per payment (token units)")
@click.option("--token", required=True, help="Token symbol, e.g. USDC")
@click.option("--token-address", required=True, help="Token contract address")
@click.option(
    "--frequency",
    required=True,
    type=click.Choice([f.value for f in Frequency], case_sensitive=False),
)
@click.option("--recipient", default=None, help="Recipient address (on-chain intents)")
@click.option("--name", default=None)
@click.option("--description", default=None)
@click.option("--safety-buffer", default="0", help="Balance to keep after paying")
@click.option("--max-gas-price", default=None, type=int, help="Gas price ceiling in wei")
@click.option("--window-start", default=None, help="Earliest time of day, HH:MM")
@click.option("--window-end", default=None, help="End of the time window (exclusive), HH:MM")
@click.option("--off-ramp", is_flag=True, help="Pay out via mobile money instead of on-chain")
@click.option("--phone", default=None, help="Mobile-money phone number (off-ramp)")
@click.option("--country", default=None, help="Mobile-money country (off-ramp)")
@click.option("--on-chain-id", default=None, type=int, help="Intent id on the ledger contract")
@click.option("--start-at", default=None, type=click.DateTime(), help="First execution (UTC)")
def intents_create(
    owner_id: str,
    amount: str,
    token: str,
    token_address: str,
    frequency: str,
    recipient: str | None,
    name: str | None,
    description: str | None,
    safety_buffer: str,
    max_gas_price: int | None,
    window_start: str | None,
    window_end: str | None,
    off_ramp: bool,
    phone: str | None,
    country: str | None,
    on_chain_id: int | None,
    start_at: datetime | None,
) -> None:
    """Create a new ACTIVE intent."""
    setup_logging()
    from pydantic import ValidationError

    from flowpay.services.notifier import NotificationService, intent_created_message

    fields: dict[str, Any] = {
        "name": name,
        "description": description,
        "recipient": recipient,
        "amount": Decimal(amount),
        "token": token,
        "token_address": token_address,
        "frequency": frequency.upper(),
        "safety_buffer": Decimal(safety_buffer),
        "max_gas_price": max_gas_price,
        "time_window_start": window_start,
        "time_window_end": window_end,
        "is_off_ramp": off_ramp,
        "on_chain_id": on_chain_id,
        "start_at": start_at,
    }
    if off_ramp or phone or country:
        fields["off_ramp_details"] = {"phone_number": phone or "", "country": country or ""}

    try:
        data = IntentCreate.model_validate(fields)
    except ValidationError as e:
        click.echo(f"ERROR: invalid intent:\n{e}")
        raise SystemExit(1)

    session_factory = _session_factory()
    store = IntentStore(session_factory)
    try:
        intent = store.create_intent(owner_id, data)
    except IntentValidationError as e:
        click.echo(f"ERROR: {e}")
        raise SystemExit(1)

    notifier = NotificationService(session_factory)

    async def _announce() -> None:
        title, message, payload = intent_created_message(intent)
        try:
            await notifier.notify(intent.owner_id, NotificationType.INTENT_CREATED, title, message, payload)
        finally:
            await notifier.close()

    asyncio.run(_announce())
    click.echo(json.dumps(intent.to_dict(), indent=2))


@intents.command(name="list")
@click.option("--owner", "owner_id", default=None, help="Only this owner's intents")
@click.option(
    "--status",
    "status_filter",
    default=None,
    type=click.Choice([s.value for s in IntentStatus], case_sensitive=False),
)
@click.option("--json-output", is_flag=True, help="Output as JSON")
def intents_list(owner_id: str | None, status_filter: str | None, json_output: bool) -> None:
    """List intents, newest first."""
    setup_logging()
    store = IntentStore(_session_factory())
    status_enum = IntentStatus(status_filter.upper()) if status_filter else None
    found = store.list_intents(owner_id=owner_id, status=status_enum)

    if json_output:
        click.echo(json.dumps([i.to_dict() for i in found], indent=2))
    else:
        _print_intents(found)


@intents.command(name="show")
@click.argument("intent_id")
@click.option("--limit", default=10, type=int, help="Number of executions to show")
def intents_show(intent_id: str, limit: int) -> None:
    """Show one intent with its recent executions."""
    setup_logging()
    store = IntentStore(_session_factory())
    intent = store.get_intent(intent_id)
    if intent is None:
        click.echo(f"ERROR: Intent {intent_id} not found")
        raise SystemExit(1)

    payload = intent.to_dict()
    payload["executions"] = [e.to_dict() for e in store.list_executions(intent_id, limit=limit)]
    click.echo(json.dumps(payload, indent=2))


@intents.command(name="edit")
@click.argument("intent_id")
@click.option("--amount", default=None, type=str)
@click.option("--safety-buffer", default=None, type=str)
@click.option(
    "--frequency",
    default=None,
    type=click.Choice([f.value for f in Frequency], case_sensitive=False),
)
@click.option("--max-gas-price", default=None, type=int)
@click.option("--name", default=None)
def intents_edit(
    intent_id: str,
    amount: str | None,
    safety_buffer: str | None,
    frequency: str | None,
    max_gas_price: int | None,
    name: str | None,
) -> None:
    """Edit an intent. Only the given options change."""
    setup_logging()
    changes: dict[str, Any] = {}
    if amount is not None:
        changes["amount"] = Decimal(amount)
    if safety_buffer is not None:
        changes["safety_buffer"] = Decimal(safety_buffer)
    if frequency is not None:
        changes["frequency"] = frequency.upper()
    if max_gas_price is not None:
        changes["max_gas_price"] = max_gas_price
    if name is not None:
        changes["name"] = name

    store = IntentStore(_session_factory())
    try:
        intent = store.update_intent(intent_id, IntentPatch.model_validate(changes))
    except IntentValidationError as e:
        click.echo(f"ERROR: {e}")
        raise SystemExit(1)
    if intent is None:
        click.echo(f"ERROR: Intent {intent_id} not found or not editable")
        raise SystemExit(1)
    click.echo(json.dumps(intent.to_dict(), indent=2))


def _transition_command(action: str, help_text: str):
    @intents.command(name=action, help=help_text)
    @click.argument("intent_id")
    def _command(intent_id: str) -> None:
        setup_logging()
        store = IntentStore(_session_factory())
        intent = getattr(store, f"{action}_intent")(intent_id)
        if intent is None:
            click.echo(f"❌ Could not {action} intent {intent_id}")
            raise SystemExit(1)
        click.echo(f"✓ Intent {intent_id[:8]}... is now {intent.status.value}")

    return _command


intents_pause = _transition_command("pause", "Pause an ACTIVE intent.")
intents_resume = _transition_command("resume", "Resume a PAUSED intent.")
intents_cancel = _transition_command("cancel", "Cancel an intent (terminal).")
intents_reactivate = _transition_command(
    "reactivate", "Reactivate a FAILED intent; it is due immediately."
)


def _print_intents(found: list[Intent]) -> None:
    if not found:
        click.echo("No intents.")
        return

    click.echo(f"\n{'ID':<10} {'NAME':<24} {'AMOUNT':>14} {'FREQ':<8} {'STATUS':<10} NEXT")
    click.echo("-" * 90)
    for i in found:
        nxt = i.next_execution.isoformat(timespec="minutes") if i.next_execution else "-"
        amount = f"{format_amount(i.amount)} {i.token}"
        click.echo(
            f"{i.id[:8]:<10} {i.display_name[:24]:<24} {amount:>14} "
            f"{i.frequency.value:<8} {i.status.value:<10} {nxt}"
        )
    click.echo()


# ----------------------------------------------------------------------
# notifications
# ----------------------------------------------------------------------


@cli.group()
def notifications() -> None:
    """Read in-app notifications."""


@notifications.command(name="list")
@click.argument("user_id")
@click.option("--limit", default=20, type=int)
@click.option("--mark-read", is_flag=True, help="Mark all listed notifications as read")
def notifications_list(user_id: str, limit: int, mark_read: bool) -> None:
    """List a user's newest notifications."""
    setup_logging()
    from flowpay.services.notifier import NotificationService

    notifier = NotificationService(_session_factory())
    items = notifier.list_notifications(user_id, limit=limit)
    click.echo(f"{notifier.unread_count(user_id)} unread")
    for n in items:
        marker = " " if n["read"] else "*"
        click.echo(f"{marker} {n['created_at']}  {n['title']}: {n['message']}")
    if mark_read:
        notifier.mark_all_read(user_id)


# ----------------------------------------------------------------------
# chain / payouts (read-only reconciliation helpers)
# ----------------------------------------------------------------------


@cli.group()
def chain() -> None:
    """Read-only ledger queries."""


@chain.command(name="balance")
@click.argument("wallet_address")
@click.option("--token-address", default=None, help="ERC-20 token; native coin if omitted")
def chain_balance(wallet_address: str, token_address: str | None) -> None:
    """Show a wallet's token or native balance."""
    setup_logging()
    from flowpay.data.chain_client import ChainError, ChainGateway

    gateway = ChainGateway()
    try:
        if token_address:
            click.echo(str(gateway.get_token_balance(token_address, wallet_address)))
        else:
            click.echo(f"{gateway.get_native_balance(wallet_address)} wei")
    except ChainError as e:
        click.echo(f"ERROR: {e}")
        raise SystemExit(1)


@chain.command(name="receipt")
@click.argument("tx_hash")
def chain_receipt(tx_hash: str) -> None:
    """Show the receipt of a submitted transaction."""
    setup_logging()
    from flowpay.data.chain_client import ChainError, ChainGateway

    try:
        receipt = ChainGateway().get_transaction_receipt(tx_hash)
    except ChainError as e:
        click.echo(f"ERROR: {e}")
        raise SystemExit(1)
    if receipt is None:
        click.echo("Pending (no receipt yet)")
        return
    click.echo(receipt.model_dump_json(indent=2))


@cli.group()
def payouts() -> None:
    """Off-ramp payout provider queries."""


@payouts.command(name="status")
@click.argument("payout_id")
def payouts_status(payout_id: str) -> None:
    """Look up a payout at the provider."""
    setup_logging()
    from flowpay.data.payout_client import PayoutGateway

    async def _main():
        async with PayoutGateway() as gateway:
            return await gateway.payout_status(payout_id)

    result = asyncio.run(_main())
    click.echo(result.model_dump_json(indent=2, exclude={"raw"}))
    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
