"""
GalaSwap V3 API Client

Async client for the GalaSwap V3 REST and WebSocket APIs. Every REST call goes
through the same resilience stack:

    with_retry(category preset)
      └─ per attempt: rate limiter wait -> circuit breaker -> HTTP request

Before a quote is requested the liquidity filter is consulted; pairs it
rejects raise PairFilteredError without touching the network, and pairs the
exchange reports as illiquid are fed back into its dynamic blacklist.

All collaborators (rate limiters, breakers, filter, gas engine, signer, HTTP
session) can be injected; anything not injected is built from BotSettings and
owned by the client for its lifetime.
"""

import asyncio
import inspect
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config.constants import (
    API_ENDPOINTS,
    ENDPOINT_TIMEOUTS_MS,
    TX_FINAL_STATUSES,
    TX_MONITOR_TIMEOUT_MS,
    TX_POLL_INTERVAL_MS,
    TX_POLL_MAX_CONSECUTIVE_ERRORS,
    TX_POLL_MAX_INTERVAL_MS,
    WS_ENDPOINTS,
)
from config.settings import BotSettings, get_settings
from core.gas_bidding import GasBid, GasBiddingEngine, OpportunityMetrics
from core.liquidity_filter import LiquidityFilter
from utils.circuit_breaker import CircuitBreakerManager
from utils.exceptions import (
    APIError,
    APITimeoutError,
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    GalaSwapBotError,
    InsufficientBalanceError,
    InsufficientLiquidityError,
    InvalidResponseError,
    NetworkError,
    PairFilteredError,
    RateLimitError,
    ServerError,
    TradeExecutionError,
    TradingError,
    UnviableTradeError,
    classify_error,
)
from utils.helpers import (
    mask_wallet,
    safe_error_message,
    validate_amount,
    validate_slippage,
    validate_token_format,
)
from utils.logger import get_logger, log_error_with_context, log_trade_event
from utils.rate_limiter import RateLimiterManager
from utils.retry_helper import ExponentialBackoff, get_api_retry_options, with_retry


logger = get_logger(__name__)

Signer = Callable[[Dict[str, Any]], Union[str, Awaitable[str]]]

_LIQUIDITY_ERROR_MARKERS = ('insufficient liquidity', 'no pools found', 'pool not found')
_BALANCE_ERROR_MARKERS = ('insufficient balance', 'insufficient funds')


@dataclass
class SwapResult:
    transaction_id: str
    expected_output: float
    minimum_output: float
    gas_bid: Optional[GasBid] = None


def _extract_message(body: Any) -> str:
    if isinstance(body, dict):
        error = body.get('error')
        if isinstance(error, dict) and error.get('message'):
            return str(error['message'])
        if body.get('message'):
            return str(body['message'])
    if isinstance(body, str):
        return body
    return 'Unknown error'


def _is_error_body(body: Any) -> bool:
    return isinstance(body, dict) and (body.get('error') is True or body.get('success') is False)


class GalaSwapClient:
    """
    GalaSwap V3 client with rate limiting, retries, circuit breakers,
    liquidity pre-filtering and gas bidding.

    Usage:
        async with GalaSwapClient(signer=my_signer) as client:
            quote = await client.get_quote('GALA$Unit$none$none', 'GUSDC$Unit$none$none', 100)
    """

    def __init__(
        self,
        settings: Optional[BotSettings] = None,
        *,
        rate_limiters: Optional[RateLimiterManager] = None,
        circuit_breakers: Optional[CircuitBreakerManager] = None,
        liquidity_filter: Optional[LiquidityFilter] = None,
        gas_bidding_engine: Optional[GasBiddingEngine] = None,
        signer: Optional[Signer] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.settings = settings or get_settings()

        self.rate_limiters = rate_limiters or RateLimiterManager(*self.settings.rate_limit_configs())
        self.circuit_breakers = circuit_breakers or CircuitBreakerManager(
            self.settings.circuit_breaker_config()
        )
        self.liquidity_filter = liquidity_filter or LiquidityFilter(
            self.settings.liquidity_filter_config(),
            remote_config_path=self.settings.liquidity_config_path,
            remote_config_url=self.settings.liquidity_config_url
        )
        self.gas_bidding_engine = gas_bidding_engine or GasBiddingEngine(
            self.settings.gas_bidding_config()
        )

        self._signer = signer
        self._session = session
        self._owns_session = session is None
        self._is_initialized = session is not None

        self._ws = None
        self._ws_task: Optional[asyncio.Task] = None
        self._price_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self._transaction_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self._tx_waiters: Dict[str, asyncio.Future] = {}

        self.consecutive_failures = 0
        self.last_successful_request: Optional[float] = None

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def initialize(self) -> None:
        """Open the HTTP session and sync remote liquidity config if configured."""
        if self._is_initialized:
            return

        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=30,
            ttl_dns_cache=300,
            enable_cleanup_closed=True
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.settings.api_timeout_sec),
            headers={
                "User-Agent": "GalaSwap-Bot/1.0",
                "Accept": "application/json"
            }
        )
        self._owns_session = True
        self._is_initialized = True

        if self.liquidity_filter.remote_config_path or self.liquidity_filter.remote_config_url:
            await self.liquidity_filter.sync_blacklist()

        logger.info(
            f"GalaSwap client initialized - API: {self.settings.galaswap_api_base_url}, "
            f"Wallet: {mask_wallet(self.settings.wallet_address)}"
        )

    async def close(self) -> None:
        """
        Close WebSocket and HTTP session and drop per-endpoint state.
        Always call this on shutdown.
        """
        await self.disconnect_websocket()

        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            logger.info("Closed aiohttp session")

        self.rate_limiters.dispose()
        self.circuit_breakers.dispose()
        self._is_initialized = False
        self.liquidity_filter.log_summary()
        logger.info("GalaSwap client closed")

    async def __aenter__(self) -> 'GalaSwapClient':
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_initialized(self) -> None:
        if not self._is_initialized or self._session is None:
            raise ConfigurationError("Client not initialized. Call initialize() first.")

    # ========================================================================
    # REQUEST PIPELINE
    # ========================================================================

    async def _request(
        self,
        endpoint: str,
        method: str = 'GET',
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        category: str = 'standard',
        breaker_name: str = 'galaswap-api'
    ) -> Dict[str, Any]:
        """
        Issue one logical API call with rate limiting, circuit breaking
        and retries.

        Args:
            endpoint: Logical endpoint name (key of API_ENDPOINTS)
            method: HTTP method
            params: Query parameters
            data: JSON body
            category: Retry preset (fast/standard/slow/transaction)
            breaker_name: Circuit breaker guarding this operation
        """
        self._ensure_initialized()

        url = f"{self.settings.galaswap_api_base_url.rstrip('/')}{API_ENDPOINTS[endpoint]}"
        breaker = self.circuit_breakers.get_or_create(breaker_name)

        async def attempt() -> Dict[str, Any]:
            await self.rate_limiters.wait_for_endpoint_limit(endpoint)
            return await breaker.call(lambda: self._send(endpoint, method, url, params, data))

        return await with_retry(
            attempt,
            get_api_retry_options(category),
            operation_name=f"{method} {endpoint}"
        )

    async def _send(
        self,
        endpoint: str,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        data: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        timeout_ms = ENDPOINT_TIMEOUTS_MS.get(endpoint, int(self.settings.api_timeout_sec * 1000))

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=data,
                timeout=aiohttp.ClientTimeout(total=timeout_ms / 1000.0)
            ) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError as e:
            self._record_failure()
            raise APITimeoutError(
                f"{endpoint} request timed out after {timeout_ms}ms",
                endpoint=endpoint,
                original_error=e
            )
        except aiohttp.ClientError as e:
            self._record_failure()
            raise NetworkError(
                f"{endpoint} request failed: {type(e).__name__}",
                details={'endpoint': endpoint},
                original_error=e
            )

        if status >= 500 or status == 429:
            self._record_failure()
        else:
            self._record_success()

        try:
            body = json.loads(text) if text else {}
        except ValueError as e:
            if status < 400:
                raise InvalidResponseError(
                    f"{endpoint} returned a non-JSON body",
                    status_code=status, endpoint=endpoint, original_error=e
                )
            body = {'message': text[:200]}

        return self._check_response(endpoint, status, body)

    def _check_response(self, endpoint: str, status: int, body: Any) -> Dict[str, Any]:
        """Translate HTTP status and error bodies into the exception taxonomy"""
        message = _extract_message(body)
        body_dict = body if isinstance(body, dict) else None

        if status == 429:
            raise RateLimitError(
                f"Rate limited on {endpoint}: {message}",
                status_code=status, response_data=body_dict, endpoint=endpoint
            )
        if status >= 500:
            raise ServerError(
                f"Server error on {endpoint}: {message}",
                status_code=status, response_data=body_dict, endpoint=endpoint
            )

        if status >= 400 or _is_error_body(body):
            lowered = message.lower()
            if any(marker in lowered for marker in _LIQUIDITY_ERROR_MARKERS):
                raise InsufficientLiquidityError(message, details={'endpoint': endpoint})
            if any(marker in lowered for marker in _BALANCE_ERROR_MARKERS):
                raise InsufficientBalanceError(message, details={'endpoint': endpoint})
            if status in (401, 403):
                raise AuthenticationError(f"{endpoint} rejected credentials: {message}")

            body_status = body_dict.get('status') if body_dict else None
            raise APIError(
                f"{endpoint} request failed: {message}",
                status_code=status if status >= 400 else (body_status if isinstance(body_status, int) else 400),
                response_data=body_dict,
                endpoint=endpoint
            )

        if body_dict is None:
            raise InvalidResponseError(
                f"Unexpected {endpoint} response type: {type(body).__name__}",
                status_code=status, endpoint=endpoint
            )
        return body_dict

    def _record_success(self) -> None:
        self.consecutive_failures = 0
        self.last_successful_request = asyncio.get_running_loop().time()

    def _record_failure(self) -> None:
        self.consecutive_failures += 1

    # ========================================================================
    # MARKET DATA
    # ========================================================================

    async def get_quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: Union[str, float],
        fee: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Quote a swap.

        Raises:
            PairFilteredError: The liquidity filter rejected the pair (no request sent)
            InsufficientLiquidityError: The exchange has no pool liquidity; the pair
                is added to the dynamic blacklist
        """
        token_in = validate_token_format(token_in)
        token_out = validate_token_format(token_out)
        amount = validate_amount(amount_in, 'amount_in')

        if self.liquidity_filter.should_filter_pair(token_in, token_out):
            raise PairFilteredError(token_in, token_out)

        params: Dict[str, Any] = {'tokenIn': token_in, 'tokenOut': token_out, 'amountIn': str(amount)}
        if fee is not None:
            params['fee'] = fee

        try:
            return await self._request('QUOTE', 'GET', params=params, category='fast', breaker_name='quote')
        except InsufficientLiquidityError:
            self.liquidity_filter.add_to_blacklist(token_in, token_out, reason='insufficient_liquidity')
            raise

    async def get_price(self, token: str) -> Dict[str, Any]:
        token = validate_token_format(token)
        return await self._request('PRICE', 'GET', params={'token': token}, category='fast')

    async def get_prices(self, tokens: List[str]) -> Dict[str, Any]:
        normalized = [validate_token_format(t) for t in tokens]
        return await self._request(
            'PRICE_MULTIPLE', 'POST', data={'tokens': normalized}, category='fast'
        )

    async def get_pool(self, token0: str, token1: str, fee: int) -> Dict[str, Any]:
        params = {
            'token0': validate_token_format(token0),
            'token1': validate_token_format(token1),
            'fee': fee,
        }
        return await self._request('POOL', 'GET', params=params)

    async def get_position(
        self,
        owner: str,
        token0: str,
        token1: str,
        fee: int,
        tick_lower: int,
        tick_upper: int
    ) -> Dict[str, Any]:
        params = {
            'owner': owner,
            'token0': validate_token_format(token0),
            'token1': validate_token_format(token1),
            'fee': fee,
            'tickLower': tick_lower,
            'tickUpper': tick_upper,
        }
        return await self._request('POSITION', 'GET', params=params)

    async def get_user_positions(self, user: Optional[str] = None, limit: int = 50) -> Dict[str, Any]:
        user = user or self.settings.wallet_address
        if not user:
            raise ConfigurationError("No wallet address configured for position lookup")
        return await self._request(
            'POSITIONS', 'GET', params={'user': user, 'limit': limit}, category='slow'
        )

    # ========================================================================
    # TRADING
    # ========================================================================

    async def generate_swap_payload(
        self,
        token_in: str,
        token_out: str,
        amount_in: Union[str, float],
        fee: int,
        amount_out_minimum: Union[str, float],
        sqrt_price_limit: Optional[str] = None
    ) -> Dict[str, Any]:
        """Ask the exchange for an unsigned swap payload"""
        data = {
            'tokenIn': validate_token_format(token_in),
            'tokenOut': validate_token_format(token_out),
            'amountIn': str(validate_amount(amount_in, 'amount_in')),
            'fee': fee,
            'amountInMaximum': str(amount_in),
            'amountOutMinimum': str(amount_out_minimum),
        }
        if sqrt_price_limit is not None:
            data['sqrtPriceLimit'] = sqrt_price_limit
        return await self._request('SWAP', 'POST', data=data, breaker_name='swap')

    async def execute_bundle(
        self,
        payload: Dict[str, Any],
        bundle_type: str = 'swap',
        signature: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Submit a signed payload. Signs with the injected signer when no
        signature is given.

        Raises:
            AuthenticationError: No signature and no signer configured
            ConfigurationError: No wallet address configured
        """
        if not self.settings.wallet_address:
            raise ConfigurationError("WALLET_ADDRESS is required to submit bundles")

        bundle_signature = signature or await self._sign(payload)
        data = {
            'payload': payload,
            'type': bundle_type,
            'signature': bundle_signature,
            'user': self.settings.wallet_address,
        }
        return await self._request('BUNDLE', 'POST', data=data, category='transaction', breaker_name='swap')

    async def _sign(self, payload: Dict[str, Any]) -> str:
        if self._signer is None:
            raise AuthenticationError("No signer configured for bundle submission")
        result = self._signer(payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def get_transaction_status(self, transaction_id: str) -> Dict[str, Any]:
        return await self._request(
            'TRANSACTION_STATUS', 'GET',
            params={'id': transaction_id},
            category='fast',
            breaker_name='transaction-poll'
        )

    async def swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: Union[str, float],
        fee: int,
        slippage_tolerance: Optional[float] = None,
        opportunity: Optional[OpportunityMetrics] = None
    ) -> SwapResult:
        """
        Quote, build, sign and submit a swap.

        Args:
            slippage_tolerance: Fraction, defaults to settings.default_slippage_tolerance
            opportunity: When given, the gas bid must be viable or the swap is aborted

        Raises:
            PairFilteredError / DataValidationError / InsufficientLiquidityError:
                pre-flight rejections, raised unchanged
            UnviableTradeError: Gas would not leave enough profit
            TradeExecutionError: Submission failed after retries; message is
                bounded and redacted, cause_kind names the failure category
        """
        slippage = validate_slippage(
            self.settings.default_slippage_tolerance if slippage_tolerance is None else slippage_tolerance
        )

        try:
            quote = await self.get_quote(token_in, token_out, amount_in, fee)
            quote_data = quote.get('data') or {}
            try:
                expected_output = float(quote_data['amountOut'])
            except (KeyError, TypeError, ValueError):
                raise InvalidResponseError("Quote response missing amountOut", endpoint='QUOTE')
            minimum_output = expected_output * (1 - slippage)

            payload = await self.generate_swap_payload(
                token_in, token_out, amount_in, fee,
                amount_out_minimum=minimum_output,
                sqrt_price_limit=quote_data.get('newSqrtPrice')
            )

            gas_bid = None
            if opportunity is not None:
                gas_bid = self.gas_bidding_engine.calculate_gas_bid(opportunity)
                if not gas_bid.profit_protection.is_viable:
                    raise UnviableTradeError(
                        gas_bid.reasoning,
                        error_code='GAS_NOT_VIABLE',
                        details={'max_gas_budget': gas_bid.profit_protection.max_gas_budget}
                    )

            bundle = await self.execute_bundle(payload.get('data', payload), 'swap')
        except GalaSwapBotError as e:
            if e.kind in (ErrorKind.FILTERED, ErrorKind.VALIDATION) and not isinstance(e, AuthenticationError):
                raise
            raise self._trade_failure(e) from e
        except Exception as e:
            raise self._trade_failure(e) from e

        transaction_id = bundle.get('data')
        if isinstance(transaction_id, dict):
            transaction_id = transaction_id.get('data') or transaction_id.get('id')
        if not transaction_id:
            raise TradeExecutionError("Bundle accepted without a transaction id", cause_kind=ErrorKind.UNKNOWN)

        log_trade_event(
            logger, 'SWAP_SUBMITTED',
            transaction_id=str(transaction_id),
            token_in=token_in,
            token_out=token_out,
            expected_output=expected_output,
            minimum_output=minimum_output
        )
        return SwapResult(
            transaction_id=str(transaction_id),
            expected_output=expected_output,
            minimum_output=minimum_output,
            gas_bid=gas_bid
        )

    @staticmethod
    def _trade_failure(error: BaseException) -> TradeExecutionError:
        kind = classify_error(error)
        failure = TradeExecutionError(
            f"Swap failed ({kind.value}): {safe_error_message(error, 200)}",
            cause_kind=kind
        )
        log_error_with_context(logger, "Swap submission failed", failure, cause_kind=kind.value)
        return failure

    # ========================================================================
    # TRANSACTION MONITORING
    # ========================================================================

    async def monitor_transaction(
        self,
        transaction_id: str,
        timeout_ms: int = TX_MONITOR_TIMEOUT_MS,
        poll_interval_ms: int = TX_POLL_INTERVAL_MS
    ) -> Dict[str, Any]:
        """
        Wait for a transaction to reach a final status.

        Uses the WebSocket when connected and falls back to polling.

        Raises:
            TradingError: Transaction FAILED or REJECTED
            TradeExecutionError: Timed out, or too many consecutive polling errors
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0

        if self.websocket_connected:
            try:
                return await self._monitor_via_websocket(transaction_id, timeout_ms)
            except (NetworkError, asyncio.TimeoutError) as e:
                logger.warning(f"WebSocket monitoring failed, falling back to polling: {safe_error_message(e)}")

        return await self._monitor_via_polling(transaction_id, deadline, poll_interval_ms)

    async def _monitor_via_websocket(self, transaction_id: str, timeout_ms: int) -> Dict[str, Any]:
        future = asyncio.get_running_loop().create_future()
        self._tx_waiters[transaction_id] = future
        try:
            await self._ws_send('subscribe_transaction', {'transactionId': transaction_id})
            update = await asyncio.wait_for(future, timeout_ms / 1000.0)
        finally:
            self._tx_waiters.pop(transaction_id, None)

        return self._final_status(transaction_id, update)

    async def _monitor_via_polling(
        self,
        transaction_id: str,
        deadline: float,
        poll_interval_ms: int
    ) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        backoff = ExponentialBackoff(
            base_delay_ms=poll_interval_ms,
            max_delay_ms=TX_POLL_MAX_INTERVAL_MS,
            jitter=False
        )
        consecutive_errors = 0

        while loop.time() < deadline:
            try:
                response = await self.get_transaction_status(transaction_id)
            except GalaSwapBotError as e:
                consecutive_errors += 1
                logger.warning(
                    f"Error checking transaction status (attempt {consecutive_errors}): "
                    f"{safe_error_message(e)}"
                )
                if consecutive_errors >= TX_POLL_MAX_CONSECUTIVE_ERRORS:
                    raise TradeExecutionError(
                        f"Too many consecutive errors monitoring transaction {transaction_id}",
                        cause_kind=classify_error(e)
                    ) from e
                await asyncio.sleep(backoff.get_next_delay() / 1000.0)
                continue

            consecutive_errors = 0
            backoff.reset()
            status_data = response.get('data') or {}
            if str(status_data.get('status', '')).upper() in TX_FINAL_STATUSES:
                return self._final_status(transaction_id, status_data)

            await asyncio.sleep(poll_interval_ms / 1000.0)

        raise TradeExecutionError(
            f"Transaction monitoring timed out: {transaction_id}",
            cause_kind=ErrorKind.TRANSPORT
        )

    @staticmethod
    def _final_status(transaction_id: str, status_data: Dict[str, Any]) -> Dict[str, Any]:
        status = str(status_data.get('status', '')).upper()
        if status == 'CONFIRMED':
            logger.info(f"Transaction confirmed: {transaction_id}")
            return status_data
        raise TradingError(
            f"Transaction {transaction_id} ended with status {status}",
            error_code='TRANSACTION_FAILED',
            details={'status': status}
        )

    # ========================================================================
    # WEBSOCKET
    # ========================================================================

    @property
    def websocket_connected(self) -> bool:
        return self._ws is not None

    async def connect_websocket(self) -> None:
        if self._ws is not None:
            logger.warning("WebSocket already connected")
            return

        url = self.settings.galaswap_ws_url
        try:
            self._ws = await websockets.connect(url, ping_interval=20, close_timeout=10)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise NetworkError("WebSocket connection failed", original_error=e)

        self._ws_task = asyncio.create_task(self._ws_receive_loop())
        logger.info("✅ WebSocket connected to GalaSwap V3")

    async def disconnect_websocket(self) -> None:
        # the receive loop clears self._ws when it exits
        ws = self._ws
        if self._ws_task is not None:
            self._ws_task.cancel()
            await asyncio.gather(self._ws_task, return_exceptions=True)
            self._ws_task = None
        self._ws = None
        if ws is not None:
            await ws.close()
            logger.info("WebSocket disconnected")

    async def subscribe_to_price_updates(
        self,
        tokens: List[str],
        callback: Callable[[Dict[str, Any]], None]
    ) -> None:
        normalized = [validate_token_format(t) for t in tokens]
        self._price_callbacks.append(callback)
        await self._ws_send('subscribe_prices', {
            'tokens': normalized,
            'channel': WS_ENDPOINTS['PRICE_UPDATES'],
        })

    async def subscribe_to_transaction_updates(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        self._transaction_callbacks.append(callback)
        await self._ws_send('subscribe_transactions', {'channel': WS_ENDPOINTS['TRANSACTION_UPDATES']})

    async def _ws_send(self, event: str, data: Dict[str, Any]) -> None:
        if self._ws is None:
            raise NetworkError("WebSocket not connected")
        try:
            await self._ws.send(json.dumps({'event': event, 'data': data}))
        except (ConnectionClosed, WebSocketException) as e:
            raise NetworkError(f"WebSocket send failed for {event}", original_error=e)

    async def _ws_receive_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    continue
                if isinstance(message, dict):
                    self._dispatch_ws_message(message)
        except ConnectionClosed as e:
            logger.warning(f"WebSocket closed: {e}")
        finally:
            self._ws = None
            for waiter in self._tx_waiters.values():
                if not waiter.done():
                    waiter.set_exception(NetworkError("WebSocket closed while waiting for transaction"))

    def _dispatch_ws_message(self, message: Dict[str, Any]) -> None:
        event = message.get('event')
        data = message.get('data') or {}

        if event == 'price_update':
            callbacks = self._price_callbacks
        elif event == 'transaction_update':
            callbacks = self._transaction_callbacks
            waiter = self._tx_waiters.get(data.get('transactionId'))
            status = str(data.get('status', '')).upper()
            if waiter is not None and not waiter.done() and status in TX_FINAL_STATUSES:
                waiter.set_result(data)
        else:
            return

        for callback in callbacks:
            try:
                callback(data)
            except Exception as e:
                logger.error(f"WebSocket {event} callback failed: {safe_error_message(e)}")

    # ========================================================================
    # HEALTH
    # ========================================================================

    async def health_check(self) -> Dict[str, Any]:
        """
        API latency class, WebSocket state and resilience-layer status.

        api_status: healthy (<1s), degraded (<5s) or unhealthy
        """
        loop = asyncio.get_running_loop()
        api_status = 'unhealthy'
        try:
            start = loop.time()
            await self._request('HEALTH', 'GET', category='fast')
            elapsed = loop.time() - start
            if elapsed < 1.0:
                api_status = 'healthy'
            elif elapsed < 5.0:
                api_status = 'degraded'
        except GalaSwapBotError as e:
            log_error_with_context(logger, "Health check failed", e)

        return {
            'is_healthy': api_status == 'healthy' and self.consecutive_failures < 3,
            'api_status': api_status,
            'websocket_status': 'connected' if self.websocket_connected else 'disconnected',
            'consecutive_failures': self.consecutive_failures,
            'last_successful_request': self.last_successful_request,
            'rate_limiter_status': self.rate_limiters.get_all_status(),
            'circuit_breakers': self.circuit_breakers.get_health_summary(),
        }
