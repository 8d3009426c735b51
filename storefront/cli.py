"""
Operator commands for the storefront.

    storefront init-db
    storefront retry-cancellation ORDER_ID
    storefront mark-return-received ORDER_ID

Commands read the same environment variables as the API and talk to the
real database, gateways and mail server.
"""

import asyncio
import logging
import sys
from typing import Awaitable, Callable, TypeVar

import click

from storefront.api.dependencies import DependencyContainer
from storefront.api.responses import OrderStatusResponse
from storefront.config import Settings
from storefront.credit_note import CreditNoteService
from storefront.errors import OrderEngineError
from storefront.lifecycle import OrderLifecycle
from storefront.notifications import NotificationOutbox, Notifier
from storefront.repos.postgresql import (
    SCHEMA_PATH,
    PostgreSQLCreditNoteSequence,
    PostgreSQLOrderRepository,
)
from storefront.use_cases.cancellation import CancellationUseCase
from storefront.use_cases.returns import ReturnsUseCase

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _run(
    settings: Settings,
    action: Callable[[DependencyContainer, NotificationOutbox], Awaitable[T]],
) -> T:
    async def main() -> T:
        container = DependencyContainer(settings)
        outbox = NotificationOutbox(await container.get_notification_sender())
        try:
            return await action(container, outbox)
        finally:
            await outbox.flush()
            await container.close()

    return asyncio.run(main())


async def _credit_notes(
    container: DependencyContainer,
    order_repo: PostgreSQLOrderRepository,
    notifier: Notifier,
) -> CreditNoteService:
    settings = container.settings
    return CreditNoteService(
        sequence=PostgreSQLCreditNoteSequence(await container.get_pool()),
        storage=await container.get_credit_note_storage(),
        lifecycle=OrderLifecycle(order_repo),
        notifier=notifier,
        store_name=settings.store_name,
        gstin=settings.store_gstin,
    )


def _echo_order(order: OrderStatusResponse) -> None:
    click.echo(f"Order {order.order_id}")
    click.echo(f"   Order status: {order.order_status}")
    click.echo(f"   Shipment status: {order.shipment_status}")
    click.echo(f"   Refund status: {order.refund_status or '-'}")
    click.echo(f"   Return status: {order.return_status}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Storefront order engine operator commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.obj = Settings.from_env()


@main.command("init-db")
@click.pass_obj
def init_db(settings: Settings) -> None:
    """Apply the PostgreSQL schema."""

    async def action(
        container: DependencyContainer, outbox: NotificationOutbox
    ) -> None:
        pool = await container.get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_PATH.read_text())

    _run(settings, action)
    click.echo(f"Schema applied from {SCHEMA_PATH.name}")


@main.command("retry-cancellation")
@click.argument("order_id")
@click.pass_obj
def retry_cancellation(settings: Settings, order_id: str) -> None:
    """Retry the shipment cancellation and refund of ORDER_ID."""

    async def action(
        container: DependencyContainer, outbox: NotificationOutbox
    ) -> OrderStatusResponse:
        order_repo = PostgreSQLOrderRepository(await container.get_pool())
        notifier = Notifier(
            outbox, container.settings.store_name, container.settings.store_gstin
        )
        use_case = CancellationUseCase(
            order_repo,
            await container.get_payment_gateway(),
            await container.get_shipment_gateway(),
            notifier,
            await _credit_notes(container, order_repo, notifier),
        )
        return await use_case.retry(order_id)

    try:
        _echo_order(_run(settings, action))
    except OrderEngineError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


@main.command("mark-return-received")
@click.argument("order_id")
@click.pass_obj
def mark_return_received(settings: Settings, order_id: str) -> None:
    """Record that the returned parcel for ORDER_ID reached the warehouse."""

    async def action(
        container: DependencyContainer, outbox: NotificationOutbox
    ) -> OrderStatusResponse:
        order_repo = PostgreSQLOrderRepository(await container.get_pool())
        notifier = Notifier(
            outbox, container.settings.store_name, container.settings.store_gstin
        )
        use_case = ReturnsUseCase(
            order_repo,
            await container.get_payment_gateway(),
            await container.get_shipment_gateway(),
            await container.get_photo_storage(),
            notifier,
            await _credit_notes(container, order_repo, notifier),
            warehouse_pincode=container.settings.pickup_pincode,
            return_window_hours=container.settings.return_window_hours,
        )
        return await use_case.mark_received(order_id)

    try:
        _echo_order(_run(settings, action))
    except OrderEngineError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
