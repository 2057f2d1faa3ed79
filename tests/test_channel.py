# =============================================================================
# Unit Tests — CancellationToken and SessionChannel
# =============================================================================

from __future__ import annotations

import asyncio
import contextlib
import json

from sse_starlette.sse import ServerSentEvent

from app.models.events import (
    OPEN_COMMENT,
    CompleteEvent,
    DeltaEvent,
    ErrorEvent,
    StatusEvent,
    to_sse,
)
from app.services.channel import CancellationToken, SessionChannel


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _channel(**kwargs) -> SessionChannel:
    return SessionChannel(CancellationToken(), **kwargs)


async def _drain(channel: SessionChannel) -> list[ServerSentEvent]:
    return [message async for message in channel.frames()]


def _payloads(messages) -> list[dict]:
    return [json.loads(m.data) for m in messages if m.data is not None]


def _status(n: int) -> StatusEvent:
    return StatusEvent(stage="s", message=f"step {n}")


class TestToSse:
    def test_data_message(self):
        message = to_sse(DeltaEvent(delta="hi"))
        assert message.event is None
        assert json.loads(message.data) == {"type": "delta", "delta": "hi"}

    def test_complete_carries_done(self):
        payload = json.loads(to_sse(CompleteEvent(answer="x")).data)
        assert payload == {"type": "complete", "answer": "x", "done": True}


class TestCancellationToken:
    def test_cancel_is_one_way(self):
        async def scenario():
            token = CancellationToken()
            assert not token.cancelled
            token.cancel("first")
            token.cancel("second")
            await asyncio.wait_for(token.wait(), 1)
            return token

        token = _run(scenario())
        assert token.cancelled
        assert token.reason == "first"


class TestSessionChannel:
    def test_frames_in_order_then_end(self):
        async def scenario():
            channel = _channel()
            await channel.send(_status(1))
            await channel.send(DeltaEvent(delta="a"))
            channel.close()
            return await _drain(channel), channel

        messages, channel = _run(scenario())
        assert messages[0].comment == OPEN_COMMENT
        assert messages[0].data is None
        assert [p["type"] for p in _payloads(messages)] == ["status", "delta"]
        assert not channel.token.cancelled
        assert channel.consumer_done

    def test_close_once(self):
        async def scenario():
            channel = _channel()
            return channel.close(), channel.close(), channel.close()

        assert _run(scenario()) == (True, False, False)

    def test_nothing_after_terminal_event(self):
        async def scenario():
            channel = _channel()
            sent = [
                await channel.send(CompleteEvent(answer="done")),
                await channel.send(ErrorEvent(message="late")),
                await channel.send(DeltaEvent(delta="late")),
            ]
            channel.close()
            return sent, await _drain(channel)

        sent, messages = _run(scenario())
        assert sent == [True, False, False]
        assert [p["type"] for p in _payloads(messages)] == ["complete"]

    def test_send_after_close_is_dropped(self):
        async def scenario():
            channel = _channel()
            channel.close()
            return await channel.send(_status(1))

        assert _run(scenario()) is False

    def test_backpressure_waits_for_drain(self):
        async def scenario():
            channel = _channel(buffer_size=2)
            await channel.send(_status(1))
            await channel.send(_status(2))
            pending = asyncio.create_task(channel.send(_status(3)))
            await asyncio.sleep(0.01)
            blocked = not pending.done()

            frames = channel.frames()
            opening = await anext(frames)
            await anext(frames)
            result = await asyncio.wait_for(pending, 1)
            await frames.aclose()
            return blocked, result, opening

        blocked, result, opening = _run(scenario())
        assert blocked
        assert result is True
        assert opening.comment == OPEN_COMMENT

    def test_client_gone_releases_blocked_writer(self):
        async def scenario():
            channel = _channel(buffer_size=1)
            await channel.send(_status(1))
            pending = asyncio.create_task(channel.send(_status(2)))
            await asyncio.sleep(0.01)
            channel.client_gone()
            return await asyncio.wait_for(pending, 1), channel

        result, channel = _run(scenario())
        assert result is False
        assert channel.token.cancelled
        assert not channel.writable

    def test_early_teardown_cancels_token(self):
        async def scenario():
            channel = _channel()
            await channel.send(_status(1))
            frames = channel.frames()
            await anext(frames)
            await frames.aclose()
            return channel

        channel = _run(scenario())
        assert channel.token.cancelled
        assert channel.consumer_done

    def test_cancelled_consumer_cancels_token(self):
        # EventSourceResponse cancels the body task on http.disconnect
        async def scenario():
            channel = _channel()
            consumer = asyncio.create_task(_drain(channel))
            await asyncio.sleep(0.01)
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
            return channel, await channel.send(_status(1))

        channel, sent = _run(scenario())
        assert channel.token.cancelled
        assert channel.consumer_done
        assert sent is False
