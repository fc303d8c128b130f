import asyncio

import pytest

from config import DateRange
from errors import AuthRejected, NoDataInRange, RateLimited, TransportUnavailable, UpstreamError
from justcall_client import FetchRequest, JustCallClient

from conftest import ScriptedTransport, make_calls

REQUEST = {'key': ' key ', 'secret': 'secret ', 'start_date': '2024-01-01', 'end_date': '2024-01-31'}


def _fetch(config, transport, sleep, request=REQUEST):
    progress = []

    async def run():
        async with JustCallClient(config, transport=transport, sleep=sleep) as client:
            return await client.fetch_transcripts(request, progress.append)

    return asyncio.run(run()), progress


def _pages(k, r):
    pages = [{'data': make_calls(50, start=50 * i)} for i in range(k)]
    pages.append({'data': make_calls(r, start=50 * k)})
    return pages


@pytest.mark.parametrize('k,r', [(0, 7), (1, 1), (2, 49), (3, 20)])
def test_pagination_returns_every_record(config, sleep, k, r):
    transport = ScriptedTransport({'direct': [{'data': []}] + _pages(k, r)})

    result, progress = _fetch(config, transport, sleep)

    assert len(result) == 50 * k + r
    assert len(progress) == k + 1
    assert progress == sorted(set(progress))
    assert progress[-1] == 50 * k + r
    assert [record.id for record in result] == [str(i) for i in range(50 * k + r)]


def test_exact_multiple_of_page_size_ends_on_empty_page(config, sleep):
    transport = ScriptedTransport({'direct': [{'data': []}] + _pages(2, 0)})

    result, progress = _fetch(config, transport, sleep)

    assert len(result) == 100
    assert progress == [50, 100, 100]
    assert result.pages == 3


def test_delay_between_pages_but_not_after_last(config, sleep):
    transport = ScriptedTransport({'direct': [{'data': []}] + _pages(2, 10)})

    _fetch(config, transport, sleep)

    assert sleep.delays == [0.5, 0.5]


def test_page_request_parameters(config, sleep):
    transport = ScriptedTransport({'direct': [{}] + _pages(1, 0)})

    _fetch(config, transport, sleep)

    start, end = DateRange.parse('2024-01-01', '2024-01-31').to_epoch_interval()
    first_page = transport.calls[1][1]
    assert first_page.params == {
        'from': str(start), 'to': str(end), 'page': '1', 'per_page': '50',
        'fetch_transcription': 'true',
    }
    assert first_page.headers['Authorization'] == 'key:secret'
    assert transport.calls[2][1].params['page'] == '2'


def test_top_level_array_payload(config, sleep):
    transport = ScriptedTransport({'direct': [[], make_calls(3)]})

    result, _ = _fetch(config, transport, sleep)

    assert [record.transcript for record in result] == ['call 0', 'call 1', 'call 2']


def test_empty_range_is_flagged_not_raised(config, sleep):
    transport = ScriptedTransport({'direct': [{'data': []}, {'data': []}]})

    result, progress = _fetch(config, transport, sleep)

    assert result.no_data_in_range
    assert progress == [0]
    with pytest.raises(NoDataInRange):
        result.raise_if_empty()


def test_fetch_uses_relay_chosen_by_probe(config, sleep):
    transport = ScriptedTransport({
        'direct': [TransportUnavailable('blocked')],
        'local-relay': [{'data': []}, {'data': make_calls(2)}],
    })

    result, _ = _fetch(config, transport, sleep)

    assert result.strategy == 'local-relay'
    assert transport.strategies_tried() == ['direct', 'local-relay', 'local-relay']


def test_error_mid_fetch_aborts_without_partial_result(config, sleep):
    transport = ScriptedTransport({'direct': [{'data': []}, {'data': make_calls(50)}, RateLimited(60)]})

    with pytest.raises(RateLimited):
        _fetch(config, transport, sleep)


def test_auth_rejected_during_fetch(config, sleep):
    transport = ScriptedTransport({'direct': [{'data': []}, AuthRejected(401)]})

    with pytest.raises(AuthRejected):
        _fetch(config, transport, sleep)


def test_upstream_error_is_not_retried(config, sleep):
    transport = ScriptedTransport({'direct': [{'data': []}, UpstreamError(500, 'boom')]})

    with pytest.raises(UpstreamError):
        _fetch(config, transport, sleep)
    assert len(transport.calls) == 2


def test_transient_timeout_is_retried(config, sleep):
    timeout = TransportUnavailable('NETWORK TIMEOUT', transient=True)
    transport = ScriptedTransport({'direct': [{'data': []}, timeout, {'data': make_calls(4)}]})

    result, _ = _fetch(config, transport, sleep)

    assert len(result) == 4
    assert len(sleep.delays) == 1


def test_transient_timeouts_exhaust_retries(config, sleep):
    timeout = TransportUnavailable('NETWORK TIMEOUT', transient=True)
    transport = ScriptedTransport({'direct': [{'data': []}] + [timeout] * config.max_retries})

    with pytest.raises(TransportUnavailable):
        _fetch(config, transport, sleep)
    assert len(transport.calls) == 1 + config.max_retries


def test_probe_result_is_reused_after_test_connection(config, sleep):
    transport = ScriptedTransport({'direct': [{'data': []}, {'data': make_calls(1)}]})

    async def run():
        async with JustCallClient(config, transport=transport, sleep=sleep) as client:
            strategy = await client.test_connection('key', 'secret')
            result = await client.fetch_transcripts(
                FetchRequest.from_mapping(REQUEST), lambda count: None)
            return strategy, result

    strategy, result = asyncio.run(run())

    assert strategy.name == 'direct'
    assert len(result) == 1
    assert len(transport.calls) == 2


def test_probe_reruns_when_reuse_disabled(config, sleep):
    config.reuse_probe = False
    transport = ScriptedTransport({'direct': [{'data': []}, {'data': []}, {'data': []}]})

    async def run():
        async with JustCallClient(config, transport=transport, sleep=sleep) as client:
            await client.test_connection('key', 'secret')
            return await client.fetch_transcripts(REQUEST)

    asyncio.run(run())
    assert len(transport.calls) == 3


def test_test_connection_rejects_blank_credentials(config, sleep):
    client = JustCallClient(config, transport=ScriptedTransport({}), sleep=sleep)

    with pytest.raises(ValueError):
        asyncio.run(client.test_connection('  ', 'secret'))


def test_dead_cached_strategy_is_replaced(config, sleep):
    transport = ScriptedTransport({
        'direct': [{'data': []}, TransportUnavailable('relay gone'), TransportUnavailable('relay gone')],
        'local-relay': [{'data': []}, {'data': make_calls(2)}],
    })

    async def run():
        async with JustCallClient(config, transport=transport, sleep=sleep) as client:
            await client.test_connection('key', 'secret')
            return await client.fetch_transcripts(REQUEST)

    result = asyncio.run(run())

    assert result.strategy == 'local-relay'
    assert len(result) == 2
    assert transport.strategies_tried() == ['direct', 'direct', 'direct', 'local-relay', 'local-relay']


def test_failed_fetch_does_not_leave_dead_strategy_cached(config, sleep):
    transport = ScriptedTransport({
        'direct': [{'data': []}, TransportUnavailable('relay gone'), TransportUnavailable('relay gone')],
        'local-relay': [{'data': []}, {'data': make_calls(1)}],
    })

    async def run():
        async with JustCallClient(config, transport=transport, sleep=sleep) as client:
            with pytest.raises(TransportUnavailable):
                await client.fetch_transcripts(REQUEST)
            return await client.fetch_transcripts(REQUEST)

    result = asyncio.run(run())

    assert result.strategy == 'local-relay'
    assert transport.strategies_tried() == ['direct', 'direct', 'direct', 'local-relay', 'local-relay']


def test_later_page_transport_failure_keeps_strategy(config, sleep):
    transport = ScriptedTransport({
        'direct': [{'data': []}, {'data': make_calls(50)}, TransportUnavailable('relay gone')],
    })

    with pytest.raises(TransportUnavailable):
        _fetch(config, transport, sleep)
    assert transport.strategies_tried() == ['direct', 'direct', 'direct']


def test_max_pages_caps_the_loop(config, sleep):
    config.max_pages = 2
    transport = ScriptedTransport({'direct': [{'data': []}] + _pages(4, 10)})

    result, progress = _fetch(config, transport, sleep)

    assert len(result) == 100
    assert result.pages == 2
    assert progress == [50, 100]
    assert sleep.delays == [0.5]
