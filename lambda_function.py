"""
Polygon Option Contract Lookup Lambda (single file, env-driven)

Key features:
- Accepts parameters from API Gateway query strings, headers, a JSON body,
  or a direct invocation payload (first match wins)
- Lists option contracts for an underlying ticker, expiring between today (NY date)
  and today + days_forward
- Fetches a snapshot for every listed contract concurrently over one shared client
- Returns a flat summary per contract (type, expiration, IV, open interest, premium, strike, ticker)
- A contract whose snapshot fails is dropped; only a failed listing call fails the invocation

Handler: lambda_function.lambda_handler

Request fields (all optional, all strings):
- ticker_symbol (default "AAPL")
- api_key (default POLYGON_API_KEY env, else "YOUR_API_KEY")
- limit (default "10")
- days_forward (default "30")
- contract_type (default "call")

Optional env vars:
- POLYGON_BASE_URL (default https://api.polygon.io)
- POLYGON_API_KEY
- REQUEST_TIMEOUT_SECS (default 5)
- MARKET_TZ (default America/New_York; "today" is the market date, not host-local/UTC)
- LOG_EVENT (default false)
"""

import os
import json
import asyncio
import math
from decimal import Decimal
from datetime import datetime, date, timedelta
from urllib.parse import quote
from zoneinfo import ZoneInfo
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

import httpx
from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

logger = Logger(service="polygon-options-lookup")
metrics = Metrics(namespace="PolygonOptionsLookup", service="polygon-options-lookup")


# -----------------------
# Small helpers first (used by env parsing)
# -----------------------
def env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "t", "yes", "y", "on")


# -----------------------
# Env config
# -----------------------
POLYGON_BASE_URL = os.getenv("POLYGON_BASE_URL", "https://api.polygon.io").rstrip("/")
REQUEST_TIMEOUT_SECS = float(os.getenv("REQUEST_TIMEOUT_SECS", "5"))
MARKET_TZ = ZoneInfo(os.getenv("MARKET_TZ", "America/New_York"))
LOG_EVENT = env_bool("LOG_EVENT", False)

DEFAULT_TICKER_SYMBOL = "AAPL"
DEFAULT_API_KEY = os.getenv("POLYGON_API_KEY", "").strip() or "YOUR_API_KEY"
DEFAULT_LIMIT = "10"
DEFAULT_DAYS_FORWARD = "30"
DEFAULT_CONTRACT_TYPE = "call"

FALLBACK_DAYS_FORWARD = 30
NOT_AVAILABLE = "N/A"

PARAM_FIELDS = ("ticker_symbol", "api_key", "limit", "days_forward", "contract_type")


# -----------------------
# Exceptions
# -----------------------
class PolygonError(RuntimeError):
    pass

class ContractListingError(PolygonError):
    """The contract listing call failed in transport or returned unreadable JSON."""


# -----------------------
# Request parameters
# -----------------------
class RequestParams(NamedTuple):
    ticker_symbol: str = DEFAULT_TICKER_SYMBOL
    api_key: str = DEFAULT_API_KEY
    limit: str = DEFAULT_LIMIT
    days_forward: str = DEFAULT_DAYS_FORWARD
    contract_type: str = DEFAULT_CONTRACT_TYPE

    @classmethod
    def from_mapping(cls, values: Any) -> "RequestParams":
        """Pick the known string fields out of ``values``; anything else is left at its default."""
        if not isinstance(values, Mapping):
            return cls()
        picked = {k: values[k] for k in PARAM_FIELDS if isinstance(values.get(k), str)}
        return cls(**picked)

    @classmethod
    def parse(cls, values: Any) -> "RequestParams":
        """
        Read ``values`` as a whole parameter record. Any known field that is neither
        a string nor null rejects the record, giving all defaults.
        """
        if not isinstance(values, Mapping):
            return cls()
        bad = [k for k in PARAM_FIELDS if values.get(k) is not None and not isinstance(values[k], str)]
        if bad:
            logger.warning({"msg": "Non-string parameter fields, using defaults", "fields": bad})
            return cls()
        return cls.from_mapping(values)


def mask_secret(s: str) -> str:
    if len(s) <= 4:
        return "*" * len(s)
    return "*" * (len(s) - 4) + s[-4:]

# A present key matches even when its value is null; the fields then default.
def _from_query_string(event: Mapping[str, Any]) -> Optional[RequestParams]:
    if "queryStringParameters" not in event:
        return None
    return RequestParams.from_mapping(event["queryStringParameters"])

def _from_headers(event: Mapping[str, Any]) -> Optional[RequestParams]:
    if "headers" not in event:
        return None
    return RequestParams.from_mapping(event["headers"])

def _from_body(event: Mapping[str, Any]) -> Optional[RequestParams]:
    if "body" not in event:
        return None
    body = event.get("body")
    if not isinstance(body, str):
        logger.warning({"msg": "Non-string body, using defaults", "body_type": type(body).__name__})
        return RequestParams()
    try:
        parsed = json.loads(body)
    except ValueError as e:
        logger.warning({"msg": "Malformed JSON body, using defaults", "error": str(e)})
        return RequestParams()
    return RequestParams.parse(parsed)

def _from_payload(event: Any) -> RequestParams:
    return RequestParams.parse(event)

# Tried in order; the first strategy returning a record wins.
_EXTRACTORS = (
    ("queryStringParameters", _from_query_string),
    ("headers", _from_headers),
    ("body", _from_body),
)

def resolve_request_id(event: Any, context: Any) -> str:
    if isinstance(event, Mapping):
        rc = event.get("requestContext")
        if isinstance(rc, Mapping) and isinstance(rc.get("requestId"), str):
            return rc["requestId"]
    return str(getattr(context, "aws_request_id", ""))

def extract_request(event: Any, context: Any) -> Tuple[RequestParams, str]:
    """
    Normalize any supported event shape into (RequestParams, request_id).
    Malformed or missing input always degrades to defaults; never raises.
    """
    params: Optional[RequestParams] = None
    source = "payload"

    if isinstance(event, Mapping):
        for name, extractor in _EXTRACTORS:
            params = extractor(event)
            if params is not None:
                source = name
                break

    if params is None:
        params = _from_payload(event)

    request_id = resolve_request_id(event, context)

    logger.info({
        "msg": "Using parameters",
        "source": source,
        "request_id": request_id,
        "ticker_symbol": params.ticker_symbol,
        "api_key": mask_secret(params.api_key),
        "limit": params.limit,
        "days_forward": params.days_forward,
        "contract_type": params.contract_type,
    })
    return params, request_id


# -----------------------
# Helpers
# -----------------------
def today_market() -> date:
    return datetime.now(MARKET_TZ).date()

def parse_days_forward(s: str) -> int:
    try:
        return int(s.strip())
    except (AttributeError, ValueError):
        logger.warning({
            "msg": "Unparseable days_forward, using fallback",
            "days_forward": s,
            "fallback_days": FALLBACK_DAYS_FORWARD,
        })
        return FALLBACK_DAYS_FORWARD

def expiration_upper_bound(today: date, days: int) -> date:
    try:
        return today + timedelta(days=days)
    except OverflowError:
        logger.warning({
            "msg": "days_forward out of date range, using fallback",
            "days_forward": days,
            "fallback_days": FALLBACK_DAYS_FORWARD,
        })
        return today + timedelta(days=FALLBACK_DAYS_FORWARD)

def build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=POLYGON_BASE_URL,
        headers={"Accept": "application/json"},
        timeout=httpx.Timeout(REQUEST_TIMEOUT_SECS),
    )


# -----------------------
# Polygon API calls (no retries)
# -----------------------
async def list_option_contracts(
    client: httpx.AsyncClient,
    api_key: str,
    ticker_symbol: str,
    limit: str,
    days_forward: str,
    contract_type: str,
) -> List[str]:
    """
    List contract tickers for ``ticker_symbol`` expiring within ``days_forward`` days.

    A non-2xx status is logged and treated as "no contracts". Transport errors and
    malformed JSON raise ContractListingError.
    """
    today = today_market()
    future_date = expiration_upper_bound(today, parse_days_forward(days_forward))

    params = {
        "apiKey": api_key,
        "underlying_ticker": ticker_symbol,
        "limit": limit,
        "order": "asc",
        "sort": "expiration_date",
        "expiration_date.gte": today.strftime("%Y-%m-%d"),
        "expiration_date.lte": future_date.strftime("%Y-%m-%d"),
        "contract_type": contract_type,
    }

    try:
        resp = await client.get("/v3/reference/options/contracts", params=params)
        if not resp.is_success:
            logger.warning({
                "msg": "Error fetching contracts",
                "ticker_symbol": ticker_symbol,
                "status_code": resp.status_code,
                "response": resp.text,
            })
            return []
        data = resp.json()
    except httpx.HTTPError as e:
        raise ContractListingError(f"contract listing for {ticker_symbol} failed: {e}") from e
    except ValueError as e:
        raise ContractListingError(f"contract listing for {ticker_symbol} returned invalid JSON: {e}") from e

    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        return []
    return [c["ticker"] for c in results if isinstance(c, dict) and isinstance(c.get("ticker"), str)]

async def fetch_contract_details(
    client: httpx.AsyncClient,
    api_key: str,
    underlying_ticker: str,
    contract_ticker: str,
) -> Any:
    # Option tickers carry a ':' prefix (O:AAPL...), so escape everything.
    url = f"/v3/snapshot/options/{underlying_ticker}/{quote(contract_ticker, safe='')}"
    resp = await client.get(url, params={"apiKey": api_key})

    if not resp.is_success:
        logger.warning({
            "msg": "Error fetching contract details",
            "contract_ticker": contract_ticker,
            "status_code": resp.status_code,
            "response": resp.text,
        })
        return None

    data = resp.json()
    return data.get("results") if isinstance(data, dict) else None

async def fetch_all_contract_details(
    client: httpx.AsyncClient,
    api_key: str,
    underlying_ticker: str,
    contract_tickers: List[str],
) -> List[Any]:
    """
    Fire every snapshot request at once and wait for all of them.
    Outcomes line up with ``contract_tickers``; a failed fetch yields its exception.
    """
    tasks = [
        asyncio.create_task(fetch_contract_details(client, api_key, underlying_ticker, t))
        for t in contract_tickers
    ]
    return list(await asyncio.gather(*tasks, return_exceptions=True))


# -----------------------
# Shaping
# -----------------------
def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)

def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, Mapping) else None

def _text(x: Any) -> str:
    return x if isinstance(x, str) else NOT_AVAILABLE

def number_text(x: Any) -> str:
    """Shortest decimal form: 150 and 150.0 -> "150", 152.5 -> "152.5"."""
    if not _is_number(x):
        return NOT_AVAILABLE
    f = float(x)
    if not math.isfinite(f):
        return str(f)
    # Plain digits, never exponent form: 1e21 -> "1000000000000000000000".
    s = format(Decimal(repr(f)), "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s

def percent_text(x: Any) -> str:
    return f"{x * 100.0:.2f}%" if _is_number(x) else NOT_AVAILABLE

def price_text(x: Any) -> str:
    return f"{x:.2f}" if _is_number(x) else NOT_AVAILABLE

def count_text(x: Any) -> str:
    if isinstance(x, int) and not isinstance(x, bool) and x >= 0:
        return str(x)
    return NOT_AVAILABLE

def shape_contract(detail: Any) -> Dict[str, str]:
    details = _get(detail, "details")
    return {
        "contract_type": _text(_get(details, "contract_type")),
        "expiration_date": _text(_get(details, "expiration_date")),
        "implied_volatility": percent_text(_get(detail, "implied_volatility")),
        "open_interest": count_text(_get(detail, "open_interest")),
        "premium": price_text(_get(_get(detail, "last_quote"), "midpoint")),
        "strike_price": number_text(_get(details, "strike_price")),
        "ticker": _text(_get(details, "ticker")),
    }

def shape_contracts(outcomes: List[Any]) -> List[Dict[str, str]]:
    shaped: List[Dict[str, str]] = []
    for item in outcomes:
        if isinstance(item, BaseException):
            logger.warning({
                "msg": "Error fetching contract details",
                "error": str(item),
                "error_type": type(item).__name__,
            })
            continue
        if item is None:
            logger.info("Contract data is null.")
            continue
        shaped.append(shape_contract(item))
    return shaped


# -----------------------
# Orchestration
# -----------------------
async def lookup_option_contracts(params: RequestParams) -> List[Dict[str, str]]:
    async with build_client() as client:
        contract_tickers = await list_option_contracts(
            client,
            params.api_key,
            params.ticker_symbol,
            params.limit,
            params.days_forward,
            params.contract_type,
        )
        logger.info({"msg": "Retrieved contract tickers", "contract_tickers": contract_tickers})
        metrics.add_metric(name="ContractsListed", unit=MetricUnit.Count, value=len(contract_tickers))

        outcomes = await fetch_all_contract_details(
            client, params.api_key, params.ticker_symbol, contract_tickers
        )

    contracts = shape_contracts(outcomes)
    metrics.add_metric(name="ContractsReturned", unit=MetricUnit.Count, value=len(contracts))
    metrics.add_metric(name="ContractsDropped", unit=MetricUnit.Count, value=len(outcomes) - len(contracts))
    logger.info({"msg": "Formatted contracts", "count": len(contracts)})
    return contracts

def build_response(request_id: str, contracts: List[Dict[str, str]]) -> Dict[str, str]:
    return {
        "req_id": request_id,
        "response": json.dumps({"option_contracts": contracts}, separators=(",", ":")),
    }


# -----------------------
# Lambda entrypoint
# -----------------------
@logger.inject_lambda_context(log_event=LOG_EVENT)
@metrics.log_metrics(capture_cold_start_metric=True)
def lambda_handler(event: Any, context: Any) -> Dict[str, str]:
    params, request_id = extract_request(event, context)
    try:
        contracts = asyncio.run(lookup_option_contracts(params))
    except ContractListingError:
        logger.exception("Contract listing failed")
        raise
    return build_response(request_id, contracts)


# Optional alias
handler = lambda_handler
