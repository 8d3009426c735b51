"""
Dependency injection for FastAPI endpoints.

Long-lived clients (database pool, object storage, gateways) are held by
one ``DependencyContainer`` whose lifetime is the application's. Request
scoped objects (the notification outbox and the use cases built on it)
are created per request. Tests replace the repository and gateway
providers through ``app.dependency_overrides``.
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import asyncpg
from fastapi import Depends

from storefront.config import Settings
from storefront.credit_note import CreditNoteService
from storefront.lifecycle import OrderLifecycle
from storefront.notifications import NotificationOutbox, Notifier
from storefront.repos.minio import MinioFileStorageRepository
from storefront.repos.postgresql import (
    PostgreSQLCreditNoteSequence,
    PostgreSQLManifestRepository,
    PostgreSQLOrderRepository,
    PostgreSQLProductRepository,
)
from storefront.repos.razorpay import RazorpayPaymentGateway
from storefront.repos.shiprocket import ShiprocketShipmentGateway, Warehouse
from storefront.repos.smtp import SMTPNotificationSender
from storefront.repositories import (
    CreditNoteSequence,
    FileStorageRepository,
    ManifestRepository,
    NotificationSender,
    OrderRepository,
    PaymentGateway,
    ProductRepository,
    ShipmentGateway,
)
from storefront.use_cases.cancellation import CancellationUseCase
from storefront.use_cases.checkout import CheckoutUseCase
from storefront.use_cases.customer import CustomerCancellationUseCase
from storefront.use_cases.order_status import OrderStatusUseCase
from storefront.use_cases.returns import ReturnsUseCase
from storefront.use_cases.shipping import ShippingUseCase
from storefront.use_cases.webhooks import (
    PaymentWebhookUseCase,
    RefundWebhookUseCase,
    ShipmentWebhookUseCase,
)

logger = logging.getLogger(__name__)


class DependencyContainer:
    """
    Dependency injection container with singleton lifecycle management.
    Always creates real clients; mocks are provided by test overrides.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings
        self._instances: Dict[str, Any] = {}

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings.from_env()
        return self._settings

    async def get_or_create(
        self, key: str, factory: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Get or create a singleton instance."""
        if key not in self._instances:
            self._instances[key] = await factory()
        return self._instances[key]

    async def get_pool(self) -> asyncpg.Pool:
        return await self.get_or_create("pool", self._create_pool)

    async def _create_pool(self) -> asyncpg.Pool:
        logger.debug("Creating PostgreSQL connection pool")
        return await asyncpg.create_pool(self.settings.database_url)

    async def get_photo_storage(self) -> FileStorageRepository:
        async def create() -> FileStorageRepository:
            s = self.settings
            return MinioFileStorageRepository(
                endpoint=s.minio_endpoint,
                access_key=s.minio_access_key,
                secret_key=s.minio_secret_key,
                bucket_name=s.inspection_photo_bucket,
                secure=s.minio_secure,
            )

        return await self.get_or_create("photo_storage", create)

    async def get_credit_note_storage(self) -> FileStorageRepository:
        async def create() -> FileStorageRepository:
            s = self.settings
            return MinioFileStorageRepository(
                endpoint=s.minio_endpoint,
                access_key=s.minio_access_key,
                secret_key=s.minio_secret_key,
                bucket_name=s.credit_note_bucket,
                secure=s.minio_secure,
            )

        return await self.get_or_create("credit_note_storage", create)

    async def get_payment_gateway(self) -> PaymentGateway:
        async def create() -> PaymentGateway:
            s = self.settings
            return RazorpayPaymentGateway(
                key_id=s.razorpay_key_id,
                key_secret=s.razorpay_key_secret,
                webhook_secret=s.razorpay_webhook_secret,
                base_url=s.razorpay_base_url,
            )

        return await self.get_or_create("payment_gateway", create)

    async def get_shipment_gateway(self) -> ShipmentGateway:
        async def create() -> ShipmentGateway:
            s = self.settings
            return ShiprocketShipmentGateway(
                email=s.shiprocket_email,
                password=s.shiprocket_password,
                pickup_location=s.pickup_location,
                warehouse=Warehouse(
                    name=s.warehouse_name,
                    address=s.warehouse_address,
                    city=s.warehouse_city,
                    state=s.warehouse_state,
                    pincode=s.pickup_pincode,
                    phone=s.warehouse_phone,
                    email=s.mail_from,
                ),
                base_url=s.shiprocket_base_url,
            )

        return await self.get_or_create("shipment_gateway", create)

    async def get_notification_sender(self) -> NotificationSender:
        async def create() -> NotificationSender:
            s = self.settings
            return SMTPNotificationSender(
                host=s.smtp_host,
                port=s.smtp_port,
                sender=s.mail_from,
                username=s.smtp_username,
                password=s.smtp_password,
            )

        return await self.get_or_create("notification_sender", create)

    async def close(self) -> None:
        pool = self._instances.pop("pool", None)
        if pool is not None:
            await pool.close()
            logger.debug("PostgreSQL connection pool closed")
        self._instances.clear()


# Global container instance
_container = DependencyContainer()


def get_container() -> DependencyContainer:
    return _container


def get_settings() -> Settings:
    """FastAPI dependency for service settings."""
    return _container.settings


async def get_order_repository() -> OrderRepository:
    return PostgreSQLOrderRepository(await _container.get_pool())


async def get_product_repository() -> ProductRepository:
    return PostgreSQLProductRepository(await _container.get_pool())


async def get_manifest_repository() -> ManifestRepository:
    return PostgreSQLManifestRepository(await _container.get_pool())


async def get_credit_note_sequence() -> CreditNoteSequence:
    return PostgreSQLCreditNoteSequence(await _container.get_pool())


async def get_photo_storage() -> FileStorageRepository:
    return await _container.get_photo_storage()


async def get_credit_note_storage() -> FileStorageRepository:
    return await _container.get_credit_note_storage()


async def get_payment_gateway() -> PaymentGateway:
    return await _container.get_payment_gateway()


async def get_shipment_gateway() -> ShipmentGateway:
    return await _container.get_shipment_gateway()


async def get_notification_sender() -> NotificationSender:
    return await _container.get_notification_sender()


async def get_outbox(
    sender: NotificationSender = Depends(get_notification_sender),
) -> AsyncIterator[NotificationOutbox]:
    """Per-request outbox, flushed once the handler has returned."""
    outbox = NotificationOutbox(sender)
    yield outbox
    await outbox.flush()


def get_notifier(
    outbox: NotificationOutbox = Depends(get_outbox),
    settings: Settings = Depends(get_settings),
) -> Notifier:
    return Notifier(outbox, settings.store_name, settings.store_gstin)


def get_credit_note_service(
    sequence: CreditNoteSequence = Depends(get_credit_note_sequence),
    storage: FileStorageRepository = Depends(get_credit_note_storage),
    order_repo: OrderRepository = Depends(get_order_repository),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> CreditNoteService:
    return CreditNoteService(
        sequence=sequence,
        storage=storage,
        lifecycle=OrderLifecycle(order_repo),
        notifier=notifier,
        store_name=settings.store_name,
        gstin=settings.store_gstin,
    )


def get_checkout_use_case(
    product_repo: ProductRepository = Depends(get_product_repository),
    order_repo: OrderRepository = Depends(get_order_repository),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
) -> CheckoutUseCase:
    return CheckoutUseCase(product_repo, order_repo, payment_gateway)


def get_cancellation_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    shipment_gateway: ShipmentGateway = Depends(get_shipment_gateway),
    notifier: Notifier = Depends(get_notifier),
    credit_notes: CreditNoteService = Depends(get_credit_note_service),
) -> CancellationUseCase:
    return CancellationUseCase(
        order_repo, payment_gateway, shipment_gateway, notifier, credit_notes
    )


def get_returns_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    shipment_gateway: ShipmentGateway = Depends(get_shipment_gateway),
    photo_storage: FileStorageRepository = Depends(get_photo_storage),
    notifier: Notifier = Depends(get_notifier),
    credit_notes: CreditNoteService = Depends(get_credit_note_service),
    settings: Settings = Depends(get_settings),
) -> ReturnsUseCase:
    return ReturnsUseCase(
        order_repo,
        payment_gateway,
        shipment_gateway,
        photo_storage,
        notifier,
        credit_notes,
        warehouse_pincode=settings.pickup_pincode,
        return_window_hours=settings.return_window_hours,
    )


def get_customer_cancellation_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    cancellation: CancellationUseCase = Depends(get_cancellation_use_case),
    returns: ReturnsUseCase = Depends(get_returns_use_case),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> CustomerCancellationUseCase:
    return CustomerCancellationUseCase(
        order_repo, cancellation, returns, notifier, settings.otp_secret
    )


def get_order_status_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    shipment_gateway: ShipmentGateway = Depends(get_shipment_gateway),
) -> OrderStatusUseCase:
    return OrderStatusUseCase(order_repo, shipment_gateway)


def get_shipping_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    shipment_gateway: ShipmentGateway = Depends(get_shipment_gateway),
    manifest_repo: ManifestRepository = Depends(get_manifest_repository),
    settings: Settings = Depends(get_settings),
) -> ShippingUseCase:
    return ShippingUseCase(
        order_repo, shipment_gateway, manifest_repo, settings.pickup_pincode
    )


def get_payment_webhook_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> PaymentWebhookUseCase:
    return PaymentWebhookUseCase(
        order_repo,
        payment_gateway,
        notifier,
        strict_signatures=settings.strict_webhook_signatures,
    )


def get_refund_webhook_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
    credit_notes: CreditNoteService = Depends(get_credit_note_service),
    settings: Settings = Depends(get_settings),
) -> RefundWebhookUseCase:
    return RefundWebhookUseCase(
        order_repo,
        payment_gateway,
        notifier,
        credit_notes,
        strict_signatures=settings.strict_webhook_signatures,
    )


def get_shipment_webhook_use_case(
    order_repo: OrderRepository = Depends(get_order_repository),
    notifier: Notifier = Depends(get_notifier),
) -> ShipmentWebhookUseCase:
    return ShipmentWebhookUseCase(order_repo, notifier)
