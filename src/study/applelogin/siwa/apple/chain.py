from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import time
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)
import logging
from aiohttp import ClientResponse, ClientSession, FormData, hdrs
from aiohttp.typedefs import StrOrURL
from multidict import CIMultiDictProxy

from study.applelogin.siwa.app.metrics import MetricsClient

RequestFunc = Callable[..., Awaitable[ClientResponse]]


class _LoggerStub(Protocol):
    """_Logger defines which methods logger object should have."""

    @abstractmethod
    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass


_LoggerType = Union[_LoggerStub, logging.Logger]


@dataclass
class ChainRequest:
    method: str
    url: StrOrURL
    headers: dict[str, Any] | None = None
    trace_request_ctx: dict[str, Any] | None = None
    kwargs: dict[str, Any] | None = None


@dataclass
class ChainResponse:
    status: int
    headers: CIMultiDictProxy[str]
    body: str | bytes | dict[str, Any] | None = None

    @staticmethod
    async def from_aiohttp_response(response: ClientResponse) -> "ChainResponse":
        status = response.status
        headers = response.headers

        content_type = response.headers.get(hdrs.CONTENT_TYPE, "")

        if content_type.startswith("application/json"):
            return ChainResponse(
                status=status, headers=headers, body=await response.json()
            )
        elif content_type.startswith("text/"):
            return ChainResponse(
                status=status, headers=headers, body=await response.text()
            )
        else:
            return ChainResponse(
                status=status, headers=headers, body=await response.read()
            )

    def body_matches_kv(self, key: str, value: Any) -> bool:
        if self.body is None:
            return False

        return (
            isinstance(self.body, dict) and key in self.body and self.body[key] == value
        )


NextChainResponseCallbackType = Tuple[ClientResponse, ChainResponse]

NextChainCallbackType = Callable[
    [ChainRequest], Awaitable[NextChainResponseCallbackType]
]


class RequestMiddlewareBase(ABC):
    @abstractmethod
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        pass

    def handle_gen(self, next: NextChainCallbackType) -> NextChainCallbackType:
        async def next_invoke(request: ChainRequest) -> NextChainResponseCallbackType:
            return await self.handle(next, request)

        return next_invoke


class ClientAuthenticationMiddleware(RequestMiddlewareBase):
    """Appends ``client_id`` and ``client_secret`` to the form body."""

    def __init__(self, client_id: str, client_secret: str) -> None:
        super().__init__()
        self._client_id = client_id
        self._client_secret = client_secret

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:

        if request.kwargs is None:
            request.kwargs = {}

        data: Optional[FormData] = request.kwargs.get("data", None)
        if data is None:
            data = FormData()

        data.add_field("client_id", self._client_id)
        data.add_field("client_secret", self._client_secret)

        request.kwargs["data"] = data

        return await next(request)


class MetricsMiddleware(RequestMiddlewareBase):
    def __init__(self, metrics_client: MetricsClient, endpoint: str) -> None:
        super().__init__()
        self._metrics_client = metrics_client
        self._endpoint = endpoint

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        start_time = time()
        status = "exception"
        try:
            response = await next(request)
            status = str(response[1].status)
            return response
        finally:
            tags = {"endpoint": self._endpoint, "status": status}
            self._metrics_client.timer(
                "siwa.client.request.time", time() - start_time, tag_dict=tags
            )
            self._metrics_client.increment(
                "siwa.client.request.count", 1, tag_dict=tags
            )


class EndOfLineChainMiddleware:
    def __init__(
        self,
        request_func: RequestFunc,
        logger: _LoggerType,
    ) -> None:
        super().__init__()
        self._request_func = request_func
        self._logger = logger

    async def handle(self, request: ChainRequest) -> NextChainResponseCallbackType:

        # Form bodies carry client secrets and tokens, so only the target is logged.
        self._logger.debug("Making request: %s %s", request.method, request.url)

        response: ClientResponse = await self._request_func(
            request.method.lower(),
            request.url,
            headers=request.headers,
            trace_request_ctx={
                **(request.trace_request_ctx or {}),
            },
            **(request.kwargs or {}),
        )

        return response, await ChainResponse.from_aiohttp_response(response)


class ChainMiddlewareContext:
    def __init__(
        self,
        chain_callback: NextChainCallbackType,
        chain_request: ChainRequest,
    ) -> None:
        self._chain_callback = chain_callback
        self._chain_request = chain_request

        self.client_response: ClientResponse | None = None

    async def __aenter__(self) -> Tuple[ClientResponse, ChainResponse]:
        # Single attempt, requests are never replayed.
        client_response, chain_response = await self._chain_callback(
            self._chain_request
        )
        self.client_response = client_response
        return client_response, chain_response

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.client_response is not None and not self.client_response.closed:
            self.client_response.close()


class ChainMiddlewareClient:
    def __init__(
        self,
        client_session: ClientSession,
        logger: _LoggerType | None = None,
        middleware: Sequence[RequestMiddlewareBase] | None = None,
    ) -> None:
        self._client = client_session
        self._middleware = middleware

        self._logger: _LoggerType = logger or logging.getLogger("siwa_chain")

    def post(self, url: StrOrURL, **kwargs: Any) -> ChainMiddlewareContext:
        return self._make_request(method=hdrs.METH_POST, url=url, **kwargs)

    def _make_request(
        self,
        method: str,
        url: StrOrURL,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        chain_request = ChainRequest(
            method=method,
            url=url,
            headers=kwargs.pop("headers", {}),
            trace_request_ctx=kwargs.pop("trace_request_ctx", None),
            kwargs=kwargs,
        )

        end_of_line_middleware = EndOfLineChainMiddleware(
            request_func=self._client.request,
            logger=self._logger,
        )

        chain_callback: NextChainCallbackType = end_of_line_middleware.handle

        full_middleware_chain = reversed(self._middleware or [])

        for mw in full_middleware_chain:
            chain_callback = mw.handle_gen(chain_callback)

        return ChainMiddlewareContext(
            chain_callback=chain_callback,
            chain_request=chain_request,
        )
