import json
from datetime import date

import httpx
import pytest

from dailyq.scheduler.notifications import build_messages, chunk, fan_out
from dailyq.scheduler.push_client import PushGatewayClient, PushGatewayError
from dailyq.web.models import PushDestination

from helpers import jst

DAY = date(2024, 5, 1)


def gateway(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
async def daily(make_question, publish_question):
    question = await make_question("What are you reading?")
    return await publish_question(question, DAY, jst(2024, 5, 1, 10, 0))


async def add_destinations(session, tokens):
    session.add_all(
        PushDestination(token=token, user_id=f"user-{i}", platform="ios")
        for i, token in enumerate(tokens)
    )
    await session.commit()


class TestFanOut:
    async def test_no_destinations_is_not_an_error(self, session, settings, push_client, gateway_calls, daily):
        result = await fan_out(session, settings, push_client, daily)

        assert (result.total, result.sent, result.failed_batches) == (0, 0, 0)
        assert gateway_calls == []

    async def test_splits_into_batches(self, session, settings, push_client, gateway_calls, daily):
        await add_destinations(session, [f"tok-{i:03d}" for i in range(250)])

        result = await fan_out(session, settings, push_client, daily)

        assert (result.total, result.sent, result.failed_batches) == (250, 250, 0)
        assert sorted(len(batch) for batch in gateway_calls) == [50, 100, 100]

    async def test_failed_batch_does_not_stop_the_others(self, session, settings, daily):
        settings = settings.model_copy(update={"push_batch_size": 2, "push_max_concurrency": 2})
        await add_destinations(session, ["a1", "a2", "bad", "b2", "c1", "c2"])

        def handler(request):
            batch = json.loads(request.content)
            if any(message["to"] == "bad" for message in batch):
                return httpx.Response(400, json={"errors": ["bad token"]})
            return httpx.Response(200, json={"data": []})

        async with gateway(handler) as client:
            result = await fan_out(session, settings, PushGatewayClient(settings, client=client), daily)

        assert (result.total, result.sent, result.failed_batches) == (6, 4, 1)

    async def test_unexpected_http_error_stays_in_its_batch(self, session, settings, daily):
        settings = settings.model_copy(update={"push_batch_size": 2, "push_max_concurrency": 2})
        await add_destinations(session, ["a1", "a2", "bad", "b2"])

        def handler(request):
            batch = json.loads(request.content)
            if any(message["to"] == "bad" for message in batch):
                raise httpx.DecodingError("garbled response", request=request)
            return httpx.Response(200, json={"data": []})

        async with gateway(handler) as client:
            result = await fan_out(session, settings, PushGatewayClient(settings, client=client), daily)

        assert (result.total, result.sent, result.failed_batches) == (4, 2, 1)

    async def test_message_payload(self, daily):
        destination = PushDestination(token="tok-1", user_id="u1", platform="android")

        [message] = build_messages([destination], daily, "Today's Question")

        assert message == {
            "to": "tok-1",
            "sound": "default",
            "title": "Today's Question",
            "body": "What are you reading?",
            "data": {
                "type": "daily_question",
                "question_id": str(daily.question_id),
                "date": "2024-05-01",
            },
        }

    def test_chunk(self):
        assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunk([], 100) == []


class TestPushGatewayClient:
    async def test_retries_server_errors_then_succeeds(self, settings):
        statuses = iter([503, 502, 200])
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(next(statuses), json={"data": []})

        async with gateway(handler) as client:
            response = await PushGatewayClient(settings, client=client).send_batch([{"to": "t"}])

        assert response == {"data": []}
        assert len(calls) == 3

    async def test_gives_up_after_max_attempts(self, settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        async with gateway(handler) as client:
            with pytest.raises(PushGatewayError) as exc_info:
                await PushGatewayClient(settings, client=client).send_batch([{"to": "t"}])

        assert len(calls) == settings.push_max_attempts
        assert exc_info.value.status_code == 500

    async def test_client_errors_are_not_retried(self, settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, text="invalid")

        async with gateway(handler) as client:
            with pytest.raises(PushGatewayError) as exc_info:
                await PushGatewayClient(settings, client=client).send_batch([{"to": "t"}])

        assert len(calls) == 1
        assert exc_info.value.status_code == 400

    async def test_transport_errors_are_retried(self, settings):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"data": []})

        async with gateway(handler) as client:
            await PushGatewayClient(settings, client=client).send_batch([{"to": "t"}])

        assert len(calls) == 2

    async def test_other_http_errors_become_gateway_errors(self, settings):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.TooManyRedirects("redirect loop", request=request)

        async with gateway(handler) as client:
            with pytest.raises(PushGatewayError) as exc_info:
                await PushGatewayClient(settings, client=client).send_batch([{"to": "t"}])

        assert len(calls) == 1
        assert exc_info.value.status_code is None

    async def test_posts_to_configured_url(self, settings):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={})

        async with gateway(handler) as client:
            await PushGatewayClient(settings, client=client).send_batch([])

        assert seen == ["https://push.test/send"]
