"""Best-effort notification fan-out.

Lifecycle services never send notifications themselves. After their commit
they hand a trigger (see `notification_triggers`) to a
`NotificationDispatcher`, which runs it in a detached task with its own
database session. Nothing here ever raises into a request handler.
"""

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, Literal, Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from westroy.core.config import Settings
from westroy.middleware.metrics import record_notification

logger = logging.getLogger(__name__)

NotificationType = Literal[
    "request_new",
    "offer_new",
    "offer_accepted",
    "offer_rejected",
    "order_status",
    "system",
]

EMAIL_FOOTER = "Это автоматическое уведомление от платформы WESTROY."


@dataclass
class NotificationPayload:
    to: str
    subject: str
    message: str
    type: NotificationType
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_ops(self) -> bool:
        return bool(self.metadata.get("ops"))


class NotificationTransport(Protocol):
    name: str

    async def send(self, payload: NotificationPayload) -> None: ...


class LogTransport:
    """Writes every notification to the application log."""

    name = "log"

    async def send(self, payload: NotificationPayload) -> None:
        logger.info(
            f"{payload.type.upper()} | To: {payload.to} | Subject: {payload.subject}"
        )
        record_notification(self.name, "sent")


class EmailTransport:
    """Plain SMTP delivery; the blocking smtplib call runs in a worker thread."""

    name = "email"

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = "WESTROY <noreply@westroy.kz>",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def _build_message(self, payload: NotificationPayload) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = payload.subject
        msg["From"] = self.sender
        msg["To"] = payload.to
        msg.set_content(payload.message)
        msg.add_alternative(
            "<div style=\"font-family: sans-serif; padding: 20px;\">"
            f"<h2>{html.escape(payload.subject)}</h2>"
            f"<p style=\"white-space: pre-wrap;\">{html.escape(payload.message)}</p>"
            f"<hr><footer style=\"font-size: 12px; color: #888;\">{EMAIL_FOOTER}</footer>"
            "</div>",
            subtype="html",
        )
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        if self.port == 465:
            client: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with client:
            if self.port != 465:
                client.starttls()
            if self.username and self.password:
                client.login(self.username, self.password)
            client.send_message(msg)

    async def send(self, payload: NotificationPayload) -> None:
        if "@" not in payload.to:
            record_notification(self.name, "skipped")
            return
        await asyncio.to_thread(self._send_sync, self._build_message(payload))
        record_notification(self.name, "sent")


class TelegramTransport:
    """Posts ops notifications to one or more Telegram chats."""

    name = "telegram"
    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(
        self,
        bot_token: str,
        chat_ids: list[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self.bot_token = bot_token
        self.chat_ids = chat_ids
        self._client = client
        self.timeout = timeout

    async def _post(self, client: httpx.AsyncClient, chat_id: str, text: str) -> None:
        response = await client.post(
            self.API_URL.format(token=self.bot_token),
            json={
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )
        if response.status_code >= 400:
            logger.error(
                f"Telegram send to {chat_id} failed: {response.status_code} {response.text[:200]}"
            )
            record_notification(self.name, "failed")
            return
        record_notification(self.name, "sent")

    async def send(self, payload: NotificationPayload) -> None:
        if not payload.is_ops:
            return

        text = f"<b>{html.escape(payload.subject)}</b>\n\n{html.escape(payload.message)}"
        if self._client is not None:
            await asyncio.gather(*(self._post(self._client, c, text) for c in self.chat_ids))
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            await asyncio.gather(*(self._post(client, c, text) for c in self.chat_ids))


class NotificationService:
    """Sends one payload through every configured transport concurrently."""

    def __init__(self, transports: list[NotificationTransport], ops_address: str = "ops@westroy.local"):
        self.transports = transports
        self.ops_address = ops_address

    async def notify(self, payload: NotificationPayload) -> None:
        results = await asyncio.gather(
            *(t.send(payload) for t in self.transports),
            return_exceptions=True,
        )
        for transport, result in zip(self.transports, results):
            if isinstance(result, Exception):
                logger.error(
                    f"{transport.name} transport failed for {payload.type} to {payload.to}: {result}"
                )
                record_notification(transport.name, "failed")

    async def notify_ops(
        self,
        subject: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
        notification_type: NotificationType = "system",
    ) -> None:
        await self.notify(
            NotificationPayload(
                to=self.ops_address,
                subject=subject,
                message=message,
                type=notification_type,
                metadata={**(metadata or {}), "ops": True},
            )
        )


def build_notification_service(settings: Settings) -> NotificationService:
    """Assemble transports from configuration. The log transport is always on."""
    transports: list[NotificationTransport] = [LogTransport()]

    if settings.SMTP_HOST:
        transports.append(
            EmailTransport(
                host=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USER,
                password=settings.SMTP_PASSWORD,
                sender=settings.SMTP_FROM,
            )
        )
        logger.info("Email transport initialized")
    else:
        logger.info("SMTP_HOST not set, email notifications disabled")

    chat_ids = [c.strip() for c in settings.TELEGRAM_CHAT_IDS if c.strip()]
    if settings.TELEGRAM_BOT_TOKEN and chat_ids:
        transports.append(TelegramTransport(settings.TELEGRAM_BOT_TOKEN, chat_ids))
        logger.info("Telegram transport initialized")
    else:
        logger.info("Telegram not configured")

    ops_address = settings.ADMIN_NOTIFICATION_EMAIL or settings.SMTP_USER or "ops@westroy.local"
    return NotificationService(transports, ops_address=ops_address)


Trigger = Callable[..., Awaitable[None]]


class NotificationDispatcher:
    """Runs notification triggers as fire-and-forget background tasks.

    Each trigger is called as `trigger(session, notifier, *args)` with a fresh
    session, so it never touches the request's session after the response.
    """

    def __init__(
        self,
        notifier: NotificationService,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.notifier = notifier
        self.session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, trigger: Trigger, *args: Any) -> asyncio.Task:
        task = asyncio.create_task(self._run(trigger, *args))
        # Hold a reference until done so the task is not garbage collected
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, trigger: Trigger, *args: Any) -> None:
        try:
            async with self.session_factory() as session:
                await trigger(session, self.notifier, *args)
        except Exception as e:
            logger.error(f"Notification trigger {trigger.__name__} failed: {e}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all outstanding triggers (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
