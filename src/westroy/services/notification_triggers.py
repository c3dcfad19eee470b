"""Notification triggers run by `NotificationDispatcher` after a commit.

Each trigger takes `(session, notifier, *args)`, reloads what it needs with
its own session and sends through the notifier. A row that vanished in the
meantime is skipped silently.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from westroy.core.config import settings
from westroy.models.category import Category
from westroy.models.company import Company, company_categories
from westroy.models.offer import Offer, OfferStatus
from westroy.models.order import Order
from westroy.models.request import Request
from westroy.models.user import User
from westroy.schemas.guest_request import GuestRequestCreate
from westroy.services.notifications import NotificationPayload, NotificationService

OFFER_STATUS_TEXT = {
    OfferStatus.ACCEPTED.value: ("ПРИНЯТО", "принял"),
    OfferStatus.REJECTED.value: ("ОТКЛОНЕНО", "отклонил"),
}


def _app_url(path: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}{path}"


async def notify_producers_of_request(
    session: AsyncSession, notifier: NotificationService, request_id: UUID
) -> None:
    """Tell every company serving the request's category, then ops."""
    request = await session.get(Request, request_id)
    if request is None:
        return
    category = await session.get(Category, request.category_id)
    category_name = category.name_ru if category else request.parsed_category

    result = await session.execute(
        select(Company)
        .join(company_categories, company_categories.c.company_id == Company.company_id)
        .where(company_categories.c.category_id == request.category_id)
        .options(selectinload(Company.owner))
    )
    companies = result.scalars().unique().all()

    for company in companies:
        if company.owner is None or not company.owner.email:
            continue
        await notifier.notify(
            NotificationPayload(
                to=company.owner.email,
                subject=f"Новый запрос: {request.parsed_category}",
                message=(
                    f"Поступил новый запрос в категории \"{category_name}\".\n\n"
                    f"Текст: \"{request.query}\"\n"
                    f"Город: {request.parsed_city}\n"
                    f"Объем: {request.parsed_volume or 'Не указан'}\n\n"
                    f"Посмотреть в кабинете: {_app_url('/dashboard/producer')}"
                ),
                type="request_new",
                metadata={"request_id": str(request_id), "company_id": str(company.company_id)},
            )
        )

    await notifier.notify_ops(
        f"Новый клиентский запрос: {request.parsed_category}",
        (
            f"Запрос: {request.query}\n"
            f"Город: {request.parsed_city}\n"
            f"Категория: {category_name}\n"
            f"ID: {request_id}\n\n"
            f"Открыть: {_app_url('/admin')}"
        ),
        {"request_id": str(request_id), "producers_notified": len(companies)},
    )


async def notify_client_of_offer(
    session: AsyncSession, notifier: NotificationService, offer_id: UUID
) -> None:
    """Tell the request owner a new offer arrived, then ops."""
    result = await session.execute(
        select(Offer)
        .where(Offer.offer_id == offer_id)
        .options(selectinload(Offer.request), selectinload(Offer.company))
    )
    offer = result.scalar_one_or_none()
    if offer is None:
        return
    client = await session.get(User, offer.request.user_id)

    if client is not None and client.email:
        await notifier.notify(
            NotificationPayload(
                to=client.email,
                subject=f"Новое предложение по запросу \"{offer.request.parsed_category}\"",
                message=(
                    f"Компания \"{offer.company.name}\" отправила вам предложение.\n\n"
                    f"Цена: {offer.price} ₸ {offer.price_unit}\n\n"
                    f"Посмотреть предложение: {_app_url('/dashboard/client')}"
                ),
                type="offer_new",
                metadata={"offer_id": str(offer_id), "request_id": str(offer.request_id)},
            )
        )

    await notifier.notify_ops(
        "Новое предложение от поставщика",
        (
            f"Компания: {offer.company.name}\n"
            f"Запрос: {offer.request.query}\n"
            f"Цена: {offer.price} ₸ {offer.price_unit}\n"
            f"ID оффера: {offer_id}\n\n"
            f"Открыть: {_app_url('/admin')}"
        ),
        {"offer_id": str(offer_id), "request_id": str(offer.request_id)},
    )


async def notify_producer_of_offer_status(
    session: AsyncSession, notifier: NotificationService, offer_id: UUID
) -> None:
    """Tell the offering company whether its offer was accepted or rejected."""
    result = await session.execute(
        select(Offer)
        .where(Offer.offer_id == offer_id)
        .options(
            selectinload(Offer.request),
            selectinload(Offer.company).selectinload(Company.owner),
        )
    )
    offer = result.scalar_one_or_none()
    if offer is None or offer.status not in OFFER_STATUS_TEXT:
        return

    status_text, verb = OFFER_STATUS_TEXT[offer.status]
    owner = offer.company.owner
    if owner is not None and owner.email:
        await notifier.notify(
            NotificationPayload(
                to=owner.email,
                subject=f"Ваше предложение {status_text}",
                message=(
                    f"Клиент {verb} ваше предложение по запросу "
                    f"\"{offer.request.parsed_category}\".\n\n"
                    f"Статус: {status_text}\n\n"
                    f"Посмотреть детали: {_app_url('/dashboard/producer')}"
                ),
                type=f"offer_{offer.status}",
                metadata={"offer_id": str(offer_id), "request_id": str(offer.request_id)},
            )
        )

    await notifier.notify_ops(
        f"Изменение статуса оффера: {status_text}",
        (
            f"Компания: {offer.company.name}\n"
            f"Категория: {offer.request.parsed_category}\n"
            f"Статус: {status_text}\n"
            f"ID оффера: {offer_id}\n\n"
            f"Открыть: {_app_url('/admin')}"
        ),
        {"offer_id": str(offer_id), "request_id": str(offer.request_id), "status": offer.status},
    )


async def notify_order_transition(
    session: AsyncSession,
    notifier: NotificationService,
    order_id: UUID,
    from_status: str,
    to_status: str,
) -> None:
    """Ops summary of an order status change."""
    result = await session.execute(
        select(Order).where(Order.order_id == order_id).options(selectinload(Order.company))
    )
    order = result.scalar_one_or_none()
    if order is None:
        return

    await notifier.notify_ops(
        f"Заказ {from_status} → {to_status}",
        (
            f"Компания: {order.company.name}\n"
            f"Статус: {from_status} → {to_status}\n"
            f"Сумма: {order.total_price} ₸\n"
            f"ID заказа: {order_id}\n\n"
            f"Открыть: {_app_url('/admin')}"
        ),
        {
            "order_id": str(order_id),
            "from_status": from_status,
            "to_status": to_status,
            "total_price": str(order.total_price),
        },
        notification_type="order_status",
    )


async def notify_ops_of_guest_request(
    session: AsyncSession, notifier: NotificationService, guest: GuestRequestCreate
) -> None:
    """Forward a guest lead to ops; there is no account to notify."""
    lines = [
        f"Имя: {guest.name}",
        f"Телефон: {guest.phone}",
        f"Запрос: {guest.query}",
    ]
    optional = (
        ("Количество", guest.quantity),
        ("Адрес", guest.address),
        ("Поставщик", guest.company_name),
        ("Товар", guest.product_name),
        ("Город", guest.city),
    )
    lines.extend(f"{title}: {value}" for title, value in optional if value)

    await notifier.notify_ops(
        "Новая гостевая заявка",
        "\n".join(lines) + "\n\nИсточник: /search (guest inline flow)",
        {"source": "guest_request"},
    )
