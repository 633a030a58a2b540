import asyncio
from typing import Optional

import pytest

from switchboard.container import Repositories
from switchboard.entities import Agent, Channel, Contact, Conversation, Intention
from switchboard.repositories.memory import (
    InMemoryAgentRepository,
    InMemoryChannelRepository,
    InMemoryConversationRepository,
    InMemoryMessageRepository,
    InMemoryParametersRepository,
)
from switchboard.services.cache_store import InMemoryCacheStore
from switchboard.services.drivers.base import ChannelDriver, DriverResponse, InboundMessage, OutboundMessage


class FakeClock:
    """Manually advanced wall clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


class FakeDriver(ChannelDriver):
    provider = "whatsapp_web"

    def __init__(
        self,
        channel: Channel,
        *,
        authenticated: bool = True,
        requires_pairing: bool = True,
        init_error: Optional[Exception] = None,
        destroy_error: Optional[Exception] = None,
        send_errors: Optional[list] = None,
        init_delay: float = 0.0,
        qr_code: str = "2@fake-pairing-code",
        **kwargs,
    ):
        kwargs.setdefault("sleep_func", no_sleep)
        super().__init__(channel, **kwargs)
        self.requires_pairing = requires_pairing
        self.authenticated = authenticated
        self.init_error = init_error
        self.destroy_error = destroy_error
        self.send_errors = list(send_errors or [])
        self.init_delay = init_delay
        self.qr_code = qr_code
        self.initialized_with = None
        self.destroyed = False
        self.sent: list[OutboundMessage] = []
        self.typing: list[tuple[str, bool]] = []

    async def initialize(self, session_payload=None):
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        self.initialized_with = session_payload
        if self.init_error is not None:
            raise self.init_error

    async def send_message(self, message: OutboundMessage) -> DriverResponse:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(message)
        return DriverResponse(success=True, message_id=f"wamid.{len(self.sent)}")

    async def is_authenticated(self) -> bool:
        return self.authenticated

    async def generate_qr(self, force: bool = False) -> str:
        return "" if self.authenticated else self.qr_code

    async def send_typing(self, to: str, active: bool) -> None:
        self.typing.append((to, active))

    async def validate_credentials(self) -> bool:
        return True

    def parse_webhook(self, payload: dict):
        return [
            InboundMessage(
                provider_message_id=item["id"],
                sender_id=item["from"],
                text=item["body"],
                contact=Contact(id=item["from"], company_id=self.channel.company_id),
            )
            for item in payload.get("messages", [])
        ]

    async def destroy(self):
        await super().destroy()
        self.destroyed = True
        if self.destroy_error is not None:
            raise self.destroy_error


class DriverFactory:
    """Builds FakeDrivers; per-channel overrides go in `behaviour`."""

    def __init__(self):
        self.behaviour: dict[str, dict] = {}
        self.created: list[FakeDriver] = []

    def __call__(self, channel: Channel, **kwargs) -> FakeDriver:
        driver = FakeDriver(channel, **{**kwargs, **self.behaviour.get(channel.id, {})})
        self.created.append(driver)
        return driver


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def driver_factory():
    return DriverFactory()


@pytest.fixture
def channel():
    return Channel(id="ch-1", company_id="company-1", provider="whatsapp_web", name="Front desk")


@pytest.fixture
def conversation(channel):
    return Conversation(
        id="conv-1",
        company_id=channel.company_id,
        channel_id=channel.id,
        contact_id="77010001122@c.us",
    )


@pytest.fixture
def intentions():
    return [
        Intention(
            id=1,
            code="pricing",
            description="price list",
            instructions="customer asks about price cost tariff",
        ),
        Intention(
            id=2,
            code="booking",
            description="book a visit",
            instructions="customer wants appointment booking schedule",
            flow_name="reception",
        ),
    ]


@pytest.fixture
def repositories(channel, conversation, intentions):
    return Repositories(
        channels=InMemoryChannelRepository([channel]),
        conversations=InMemoryConversationRepository([conversation]),
        messages=InMemoryMessageRepository(),
        parameters=InMemoryParametersRepository(intentions),
        agents=InMemoryAgentRepository(
            [
                Agent(id=1, company_id=channel.company_id, name="Aida", intention_ids=[1, 2]),
                Agent(id=2, company_id=channel.company_id, name="Bek", intention_ids=[2]),
            ]
        ),
    )


@pytest.fixture
def sleep():
    return no_sleep
