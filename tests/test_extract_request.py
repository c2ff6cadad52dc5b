"""
Tests for turning inbound Lambda events into request parameters.
"""

import json

import pytest

from lambda_function import RequestParams, extract_request, mask_secret, DEFAULT_API_KEY


FIELDS = {
    "ticker_symbol": "MSFT",
    "api_key": "secret-key-1234",
    "limit": "25",
    "days_forward": "45",
    "contract_type": "put",
}


# ============================================================================
# Event shapes
# ============================================================================

@pytest.mark.parametrize(
    "event",
    [
        {"queryStringParameters": FIELDS},
        {"headers": FIELDS},
        {"body": json.dumps(FIELDS)},
        FIELDS,
    ],
    ids=["query", "headers", "body", "direct"],
)
def test_every_event_shape_yields_same_params(event, lambda_context):
    params, _ = extract_request(event, lambda_context)
    assert params == RequestParams(**FIELDS)


def test_missing_fields_default_independently(lambda_context):
    params, _ = extract_request({"queryStringParameters": {"ticker_symbol": "MSFT"}}, lambda_context)
    assert params.ticker_symbol == "MSFT"
    assert params.limit == "10"
    assert params.days_forward == "30"
    assert params.contract_type == "call"
    assert params.api_key == DEFAULT_API_KEY


def test_empty_event_is_all_defaults(lambda_context):
    params, _ = extract_request({}, lambda_context)
    assert params == RequestParams()
    assert params.ticker_symbol == "AAPL"


def test_malformed_body_falls_back_to_defaults(lambda_context):
    params, _ = extract_request({"body": "{not json"}, lambda_context)
    assert params == RequestParams()


def test_non_object_body_falls_back_to_defaults(lambda_context):
    assert extract_request({"body": "[1, 2]"}, lambda_context)[0] == RequestParams()
    assert extract_request({"body": None}, lambda_context)[0] == RequestParams()


def test_non_event_payload_falls_back_to_defaults(lambda_context):
    params, request_id = extract_request("AAPL", lambda_context)
    assert params == RequestParams()
    assert request_id == "ctx-request-id"


def test_query_string_wins_over_headers(lambda_context):
    event = {
        "queryStringParameters": {"ticker_symbol": "TSLA"},
        "headers": {"ticker_symbol": "NVDA"},
    }
    params, _ = extract_request(event, lambda_context)
    assert params.ticker_symbol == "TSLA"


def test_null_query_string_still_wins_over_headers(lambda_context):
    event = {"queryStringParameters": None, "headers": {"ticker_symbol": "NVDA", "limit": "3"}}
    params, _ = extract_request(event, lambda_context)
    assert params == RequestParams()


def test_null_headers_still_wins_over_body(lambda_context):
    event = {"headers": None, "body": json.dumps({"ticker_symbol": "NVDA"})}
    params, _ = extract_request(event, lambda_context)
    assert params == RequestParams()


def test_query_string_ignores_non_string_values_per_field(lambda_context):
    event = {"queryStringParameters": {"ticker_symbol": "SPY", "limit": 5}}
    params, _ = extract_request(event, lambda_context)
    assert params.ticker_symbol == "SPY"
    assert params.limit == "10"


@pytest.mark.parametrize(
    "event",
    [
        {"body": json.dumps({"ticker_symbol": "MSFT", "limit": 5})},
        {"ticker_symbol": "MSFT", "limit": 5},
    ],
    ids=["body", "direct"],
)
def test_record_with_non_string_field_is_all_defaults(event, lambda_context):
    params, _ = extract_request(event, lambda_context)
    assert params == RequestParams()


def test_record_with_null_field_keeps_other_fields(lambda_context):
    params, _ = extract_request({"body": json.dumps({"ticker_symbol": "MSFT", "limit": None})}, lambda_context)
    assert params.ticker_symbol == "MSFT"
    assert params.limit == "10"


# ============================================================================
# Request id
# ============================================================================

def test_request_id_from_request_context(lambda_context):
    event = {"headers": {}, "requestContext": {"requestId": "api-gw-id"}}
    _, request_id = extract_request(event, lambda_context)
    assert request_id == "api-gw-id"


def test_request_id_from_request_context_on_direct_invocation(lambda_context):
    event = {"ticker_symbol": "SPY", "requestContext": {"requestId": "direct-id"}}
    _, request_id = extract_request(event, lambda_context)
    assert request_id == "direct-id"


def test_request_id_falls_back_to_context(lambda_context):
    _, request_id = extract_request({"body": "{}"}, lambda_context)
    assert request_id == "ctx-request-id"


# ============================================================================
# Logging helpers
# ============================================================================

def test_mask_secret_keeps_last_four():
    assert mask_secret("abcdefgh1234") == "********1234"
    assert mask_secret("abc") == "***"
