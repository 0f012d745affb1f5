"""
テスト共通のモッククラスとフィクスチャ
"""

import asyncio
import uuid

import pytest

from solace.adapters.storage.memory import InMemoryConversationStore
from solace.domain.models.analysis import CrisisAssessment, SentimentResult
from solace.domain.models.events import SessionEvent
from solace.domain.models.user import UserAccount, UserRole
from solace.domain.ports.ai_port import (
    ChatMessage,
    GeneratedReply,
    IAnalysisProvider,
    IResponseGenerator,
    MoodContext,
)
from solace.domain.ports.connection_port import IConnection


# === モッククラス ===


class FakeClock:
    """手動で進める時計"""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection(IConnection):
    """送信イベントを記録する接続モック"""

    def __init__(self, connection_id: str | None = None, client_host: str = "127.0.0.1",
                 fail_send: bool = False):
        self._connection_id = connection_id or f"fake_{uuid.uuid4().hex[:8]}"
        self._client_host = client_host
        self._open = True
        self.fail_send = fail_send
        self.sent: list[SessionEvent] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def client_host(self) -> str | None:
        return self._client_host

    async def send(self, event: SessionEvent) -> None:
        if self.fail_send:
            raise ConnectionError("broken pipe")
        self.sent.append(event)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self._open = False
        self.close_code = code
        self.close_reason = reason

    def drop(self) -> None:
        """クライアント側の切断"""
        self._open = False

    def events(self, name: str | None = None) -> list[SessionEvent]:
        return [e for e in self.sent if name is None or e.name == name]

    def names(self) -> list[str]:
        return [e.name for e in self.sent]


class StaticAnalysisProvider(IAnalysisProvider):
    """固定の分析結果を返すモック"""

    def __init__(self, sentiment: SentimentResult | None = None,
                 crisis: CrisisAssessment | None = None,
                 fail_sentiment: bool = False, fail_crisis: bool = False,
                 delay: float = 0.0):
        self.sentiment = sentiment or SentimentResult(score=0.0)
        self.crisis = crisis or CrisisAssessment.clear()
        self.fail_sentiment = fail_sentiment
        self.fail_crisis = fail_crisis
        self.delay = delay

    async def analyze_sentiment(self, text: str) -> SentimentResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_sentiment:
            raise RuntimeError("sentiment backend down")
        return self.sentiment

    async def detect_crisis(self, text: str) -> CrisisAssessment:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_crisis:
            raise RuntimeError("crisis backend down")
        return self.crisis


class EchoResponseGenerator(IResponseGenerator):
    """直近のユーザー発言に応答するモック"""

    def __init__(self, techniques: list[str] | None = None,
                 delays: dict[str, float] | None = None):
        self.techniques = techniques or []
        self.delays = delays or {}
        self.calls: list[tuple[list[ChatMessage], MoodContext]] = []

    async def generate_reply(self, history: list[ChatMessage], mood: MoodContext) -> GeneratedReply:
        self.calls.append((history, mood))
        last = history[-1].content if history else ""
        delay = self.delays.get(last, 0.0)
        if delay:
            await asyncio.sleep(delay)
        return GeneratedReply(text=f"reply to {last}", techniques=list(self.techniques))

    @property
    def model_name(self) -> str:
        return "echo"


class FailingResponseGenerator(IResponseGenerator):
    """常に失敗するモック"""

    async def generate_reply(self, history: list[ChatMessage], mood: MoodContext) -> GeneratedReply:
        raise RuntimeError("model unavailable")

    @property
    def model_name(self) -> str:
        return "failing"


class GatedResponseGenerator(IResponseGenerator):
    """ゲートが開くまで応答を保留するモック"""

    def __init__(self):
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def generate_reply(self, history: list[ChatMessage], mood: MoodContext) -> GeneratedReply:
        self.started.set()
        await self.gate.wait()
        return GeneratedReply(text="thanks for waiting")

    @property
    def model_name(self) -> str:
        return "gated"


class FlakyStore(InMemoryConversationStore):
    """指定回数だけ書き込みに失敗するストア"""

    def __init__(self, crisis_failures: int = 0, append_failures: int = 0,
                 technique_failures: int = 0):
        super().__init__()
        self.crisis_failures = crisis_failures
        self.append_failures = append_failures
        self.technique_failures = technique_failures
        self.crisis_attempts = 0

    async def set_crisis_flag(self, conversation_id: str) -> None:
        self.crisis_attempts += 1
        if self.crisis_failures > 0:
            self.crisis_failures -= 1
            raise OSError("disk unavailable")
        await super().set_crisis_flag(conversation_id)

    async def append_message(self, message):
        if self.append_failures > 0:
            self.append_failures -= 1
            raise OSError("disk unavailable")
        return await super().append_message(message)

    async def add_techniques(self, conversation_id: str, techniques: list[str]) -> None:
        if self.technique_failures > 0:
            self.technique_failures -= 1
            raise OSError("disk unavailable")
        await super().add_techniques(conversation_id, techniques)


# === ヘルパー ===


async def create_user(store, user_id: str = "user-1", role: UserRole = UserRole.USER,
                      is_active: bool = True) -> UserAccount:
    account = UserAccount(
        user_id=user_id,
        email=f"{user_id}@example.com",
        username=user_id,
        role=role,
        is_active=is_active,
    )
    await store.save_user(account)
    return account


# === フィクスチャ ===


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
