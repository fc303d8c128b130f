"""
Connection strategies for reaching the JustCall API.

A browser cannot always call the API directly (cross-origin rules), so a
request may have to go through a relay. Some relays drop the Authorization
header, in which case the key/secret travel as query parameters instead.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import quote, urlencode

from config import Credentials
from errors import TransportUnavailable

logger = logging.getLogger(__name__)

PROBE_PARAMS = {'page': 1, 'per_page': 1}


class AuthCarrier(enum.Enum):
    HEADER = 'header'
    QUERY = 'query'


@dataclass(frozen=True)
class PreparedRequest:
    url: str
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ConnectionStrategy:
    """
    Describes one network path to the API.

    ``endpoint`` replaces the upstream URL (e.g. a local dev-server relay);
    ``relay_template`` wraps the full upstream URL, query string included,
    through a ``{url}`` placeholder.
    """
    name: str
    carrier: AuthCarrier = AuthCarrier.HEADER
    endpoint: Optional[str] = None
    relay_template: Optional[str] = None

    @property
    def is_relay(self) -> bool:
        return bool(self.endpoint or self.relay_template)

    def build_request(self, base_url: str, credentials: Credentials,
                      params: Dict[str, Any]) -> PreparedRequest:
        target = self.endpoint or base_url
        query = {key: _query_value(value) for key, value in params.items()}
        headers = {'Accept': 'application/json'}

        if self.carrier is AuthCarrier.HEADER:
            headers['Authorization'] = credentials.header_value()
        else:
            query['api_key'] = credentials.key
            query['api_secret'] = credentials.secret

        if self.relay_template:
            wrapped = f"{target}?{urlencode(query)}"
            return PreparedRequest(self.relay_template.format(url=quote(wrapped, safe='')), {}, headers)
        return PreparedRequest(target, query, headers)


def _query_value(value):
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


# Public relays strip custom headers, so they carry auth in the query string.
PUBLIC_RELAYS = {
    'corsproxy-io': 'https://corsproxy.io/?url={url}',
    'allorigins': 'https://api.allorigins.win/raw?url={url}',
    'codetabs': 'https://api.codetabs.com/v1/proxy?quest={url}',
}


def build_strategies(names: Iterable[str], local_relay_url: Optional[str] = None) -> List[ConnectionStrategy]:
    """Build the ordered strategy table from a list of strategy names."""
    strategies = []
    for name in names:
        if name == 'direct':
            strategies.append(ConnectionStrategy('direct'))
        elif name == 'direct-query':
            strategies.append(ConnectionStrategy('direct-query', AuthCarrier.QUERY))
        elif name == 'local-relay':
            if not local_relay_url:
                raise ValueError("local-relay strategy needs a local relay URL")
            strategies.append(ConnectionStrategy('local-relay', endpoint=local_relay_url))
        elif name in PUBLIC_RELAYS:
            strategies.append(ConnectionStrategy(name, AuthCarrier.QUERY, relay_template=PUBLIC_RELAYS[name]))
        else:
            known = ['direct', 'direct-query', 'local-relay'] + sorted(PUBLIC_RELAYS)
            raise ValueError(f"Unknown connection strategy '{name}'. Known: {', '.join(known)}")
    return strategies


Transport = Callable[[PreparedRequest, ConnectionStrategy], Awaitable[Any]]


async def select_strategy(transport: Transport, credentials: Credentials,
                          strategies: Sequence[ConnectionStrategy],
                          base_url: str) -> ConnectionStrategy:
    """
    Probe each strategy in order with a single one-record request and return
    the first that answers with JSON.

    Transport failures fall through to the next candidate. Anything else
    (auth rejection, rate limit, upstream error) is an answer from the API
    itself and is raised immediately.
    """
    if not strategies:
        raise ValueError("No connection strategies configured")

    tried = []
    for strategy in strategies:
        request = strategy.build_request(base_url, credentials, PROBE_PARAMS)
        logger.debug(f"Probing strategy {strategy.name}: {request.url}")
        try:
            payload = await transport(request, strategy)
        except TransportUnavailable as e:
            logger.warning(f"Strategy {strategy.name} unavailable: {e.message}")
            tried.append(strategy.name)
            continue

        if isinstance(payload, (dict, list)):
            logger.info(f"Connected using strategy {strategy.name}")
            return strategy

        logger.warning(f"Strategy {strategy.name} returned a malformed response: {type(payload).__name__}")
        tried.append(strategy.name)

    raise TransportUnavailable(
        f"CONNECTION FAILED: no connection method reached the API (tried {', '.join(tried)}). "
        "Check your network, ad blockers, or the local relay."
    )
