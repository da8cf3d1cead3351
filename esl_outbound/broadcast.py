"""
Broadcast - fan-out de mensagens para múltiplos assinantes.

Cada assinante tem sua própria fila e task de entrega:
- assinante lento não bloqueia a leitura do socket
- nenhuma mensagem é descartada
- a ordem de entrega é a ordem de publicação

Sem replay: quem assina recebe só o que for publicado depois. Quem assina
um stream já terminado recebe a notificação final imediatamente.
"""

import asyncio
import logging
import threading
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Generic,
    Optional,
    Set,
    TypeVar,
)

from .errors import StreamCompletedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEXT = "next"
_ERROR = "error"
_COMPLETED = "completed"
_STOP = "stop"


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if asyncio.iscoroutine(result):
        await result


def _call_in_loop(loop: asyncio.AbstractEventLoop, fn: Callable[..., Any], *args: Any) -> None:
    """Executa fn no loop dono do objeto (direto se já estamos nele)."""
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        fn(*args)
    elif not loop.is_closed():
        loop.call_soon_threadsafe(fn, *args)


class Subscription(Generic[T]):
    """Assinatura de um Broadcast. unsubscribe() pode ser chamado de qualquer thread."""

    def __init__(
        self,
        broadcast: "Broadcast[T]",
        on_next: Optional[Callable[[T], Any]],
        on_error: Optional[Callable[[BaseException], Any]],
        on_completed: Optional[Callable[[], Any]],
        loop: asyncio.AbstractEventLoop,
    ):
        self._broadcast = broadcast
        self._on_next = on_next
        self._on_error = on_error
        self._on_completed = on_completed
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._active = True
        self._task = loop.create_task(self._pump(), name=f"broadcast-{broadcast.name}")

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._broadcast._remove(self)
        _call_in_loop(self._loop, self._queue.put_nowait, (_STOP, None))

    async def wait(self) -> None:
        """Aguarda o fim da entrega (terminal ou unsubscribe)."""
        await asyncio.shield(self._task)

    def _push(self, kind: str, value: Any = None) -> None:
        self._queue.put_nowait((kind, value))

    async def _pump(self) -> None:
        while True:
            kind, value = await self._queue.get()
            if kind == _STOP:
                return

            if kind == _NEXT:
                if self._active and self._on_next is not None:
                    try:
                        await _invoke(self._on_next, value)
                    except Exception as e:
                        logger.error(
                            f"Subscriber error on '{self._broadcast.name}': {e}",
                            exc_info=True,
                        )
                continue

            # Terminal: entregue uma única vez e encerra
            if not self._active:
                return
            self._active = False
            try:
                if kind == _ERROR:
                    if self._on_error is not None:
                        await _invoke(self._on_error, value)
                    else:
                        logger.warning(
                            f"Unhandled error on '{self._broadcast.name}': {value!r}"
                        )
                elif self._on_completed is not None:
                    await _invoke(self._on_completed)
            except Exception as e:
                logger.error(
                    f"Subscriber terminal handler error on '{self._broadcast.name}': {e}",
                    exc_info=True,
                )
            return


class Broadcast(Generic[T]):
    """
    Stream com múltiplos assinantes.

    Uso:
        stream = Broadcast("messages")
        sub = stream.subscribe(on_next=print, on_completed=done)
        stream.publish(item)
        stream.complete()

        async for item in stream:
            ...

        item = await stream.first(lambda m: m.content_type == "command/reply")

    publish/complete/error devem ser chamados no loop dono do stream.
    """

    def __init__(self, name: str = "broadcast"):
        self.name = name
        self._subscribers: Set[Subscription[T]] = set()
        self._lock = threading.Lock()
        self._terminal: Optional[tuple] = None

    @property
    def completed(self) -> bool:
        return self._terminal is not None

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(
        self,
        on_next: Optional[Callable[[T], Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
        on_completed: Optional[Callable[[], Any]] = None,
    ) -> Subscription[T]:
        """
        Registra callbacks (funções ou coroutines).

        Precisa de um loop asyncio em execução.
        """
        loop = asyncio.get_running_loop()
        subscription = Subscription(self, on_next, on_error, on_completed, loop)
        with self._lock:
            terminal = self._terminal
            if terminal is None:
                self._subscribers.add(subscription)
        if terminal is not None:
            subscription._push(*terminal)
        return subscription

    def publish(self, item: T) -> None:
        with self._lock:
            if self._terminal is not None:
                return
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._push(_NEXT, item)

    def complete(self) -> None:
        self._terminate((_COMPLETED, None))

    def error(self, exc: BaseException) -> None:
        self._terminate((_ERROR, exc))

    def _terminate(self, terminal: tuple) -> None:
        with self._lock:
            if self._terminal is not None:
                return
            self._terminal = terminal
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscription in subscribers:
            subscription._push(*terminal)

    def _remove(self, subscription: Subscription[T]) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    def first(self, predicate: Optional[Callable[[T], bool]] = None) -> "asyncio.Future[T]":
        """
        Future com o primeiro item que satisfaz predicate.

        A assinatura é feita na hora da chamada (antes de qualquer await do
        chamador). Cancelar o future (ex: timeout) remove a assinatura.

        Raises (via future):
            StreamCompletedError: stream terminou sem item
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def on_next(item: T) -> None:
            if future.done():
                return
            if predicate is None or predicate(item):
                future.set_result(item)
                subscription.unsubscribe()

        def on_error(exc: BaseException) -> None:
            if not future.done():
                future.set_exception(exc)

        def on_completed() -> None:
            if not future.done():
                future.set_exception(
                    StreamCompletedError(f"'{self.name}' completed before a matching item")
                )

        subscription = self.subscribe(on_next, on_error, on_completed)
        future.add_done_callback(lambda _: subscription.unsubscribe())
        return future

    async def __aiter__(self) -> AsyncIterator[T]:
        queue: asyncio.Queue = asyncio.Queue()
        subscription = self.subscribe(
            on_next=lambda item: queue.put_nowait((_NEXT, item)),
            on_error=lambda exc: queue.put_nowait((_ERROR, exc)),
            on_completed=lambda: queue.put_nowait((_COMPLETED, None)),
        )
        try:
            while True:
                kind, value = await queue.get()
                if kind == _NEXT:
                    yield value
                elif kind == _ERROR:
                    raise value
                else:
                    return
        finally:
            subscription.unsubscribe()

    def __repr__(self) -> str:
        return (
            f"Broadcast(name={self.name!r}, subscribers={self.subscriber_count}, "
            f"completed={self.completed})"
        )

