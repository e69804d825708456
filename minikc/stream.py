"Multi-subscriber broadcast for asyncio: every subscriber gets its own unbounded queue."
import asyncio, logging
from typing import AsyncIterator, Callable, Generic, TypeVar

log = logging.getLogger("minikc.stream")
T = TypeVar("T")
_closed = object()


class Subscription(Generic[T]):
    "Async iterator over items published after subscribing, optionally filtered by `predicate`."

    def __init__(self, broadcast: "Broadcast[T]", predicate: Callable[[T], bool]|None=None):
        self.broadcast, self.predicate = broadcast, predicate
        self.q = asyncio.Queue()
        self.closed = False

    def offer(self, item):
        "Queue `item` if it matches; never blocks."
        if self.closed: return
        if self.predicate is not None:
            try:
                if not self.predicate(item): return
            except Exception:
                log.warning("Subscription predicate failed; skipping item", exc_info=True)
                return
        self.q.put_nowait(item)

    def end(self):
        "Wake the consumer with end-of-stream; called when the broadcast closes."
        if not self.closed: self.q.put_nowait(_closed)

    def close(self):
        "Detach from the broadcast; pending and future items are dropped."
        if self.closed: return
        self.closed = True
        self.broadcast.discard(self)
        self.q.put_nowait(_closed)

    def __aiter__(self): return self

    async def __anext__(self)->T:
        if self.closed: raise StopAsyncIteration
        item = await self.q.get()
        if item is _closed:
            self.close()
            raise StopAsyncIteration
        return item

    async def __aenter__(self): return self
    async def __aexit__(self, *exc): self.close()


class Broadcast(Generic[T]):
    "Hot fan-out stream: no replay, no backpressure, per-subscriber FIFO."

    def __init__(self, name:str="broadcast"):
        self.name = name
        self.subscribers = []
        self.closed = False

    def subscribe(self, predicate: Callable[[T], bool]|None=None)->Subscription[T]:
        sub = Subscription(self, predicate)
        if self.closed: sub.end()
        else: self.subscribers.append(sub)
        return sub

    def discard(self, sub: Subscription):
        try: self.subscribers.remove(sub)
        except ValueError: pass

    def publish(self, item: T):
        "Deliver `item` to every current subscriber."
        if self.closed: return
        for sub in list(self.subscribers): sub.offer(item)

    def close(self):
        "End every subscription; later subscribers finish immediately."
        if self.closed: return
        self.closed = True
        subs, self.subscribers = self.subscribers, []
        for sub in subs: sub.end()

    def __len__(self): return len(self.subscribers)


async def take_until(source: AsyncIterator[T], predicate: Callable[[T], bool], inclusive: bool=True)->AsyncIterator[T]:
    "Yield from `source` until `predicate` matches, then close `source`."
    try:
        async for item in source:
            done = predicate(item)
            if done and not inclusive: return
            yield item
            if done: return
    finally:
        if hasattr(source, "aclose"): await source.aclose()
        elif hasattr(source, "close"): source.close()
