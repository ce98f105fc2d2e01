"""
common.py - Shared utilities for the HomeHarbor property search backend

This module provides common functionality used by every Lambda handler:
- Environment configuration (tables, secret name, model IDs, timeouts)
- AWS client construction (DynamoDB, Secrets Manager)
- API Gateway request parsing and JSON/CORS response building
- OpenRouter API key retrieval and chat-completion calls

Architecture:
- Properties live in a DynamoDB table scanned by the search handlers
- AI insights (vision analysis, generated descriptions) are cached in a
  second DynamoDB table keyed by (property_id, analysis_type)
- LLM calls go to OpenRouter over HTTPS; the key is kept in Secrets Manager

Clients are built by the factory functions below and passed into handlers
explicitly, so tests can substitute in-memory fakes.
"""

import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from errors import UpstreamError, ValidationError

# ===============================================
# ENVIRONMENT CONFIGURATION
# ===============================================
# Load configuration from environment variables with sensible defaults

AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

# DynamoDB tables
PROPERTIES_TABLE = os.getenv("PROPERTIES_TABLE", "home-harbor-properties-dev")
AI_CACHE_TABLE = os.getenv("AI_CACHE_TABLE", "home-harbor-ai-insights-dev")

# Secrets Manager secret holding the OpenRouter key
SECRET_NAME = os.getenv("SECRET_NAME", "home-harbor/api-keys-dev")

# OpenRouter configuration
OPENROUTER_API_URL = os.getenv("OPENROUTER_API_URL", "https://openrouter.ai/api/v1/chat/completions")
VISION_MODEL_ID = os.getenv("VISION_MODEL_ID", "allenai/molmo-72b-0924")
DESCRIPTION_MODEL_ID = os.getenv("DESCRIPTION_MODEL_ID", "meta-llama/llama-3.3-70b-instruct")
OPENROUTER_TIMEOUT = int(os.getenv("OPENROUTER_TIMEOUT", "60"))  # seconds
OPENROUTER_REFERER = os.getenv("OPENROUTER_REFERER", "https://home-harbor.example.com")

# CT CAMA (Computer-Assisted Mass Appraisal) open data endpoint
CAMA_BASE_URL = os.getenv("CAMA_BASE_URL", "https://data.ct.gov/resource/rny9-6ak2.json")
CAMA_TIMEOUT = int(os.getenv("CAMA_TIMEOUT", "10"))
ENRICH_MAX_CONCURRENT = int(os.getenv("ENRICH_MAX_CONCURRENT", "3"))

# "exact" (case-sensitive) or "casefold" for city / property type filters
FILTER_MATCH_MODE = os.getenv("FILTER_MATCH_MODE", "exact").lower()

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.getLogger().setLevel(LOG_LEVEL)
logger = logging.getLogger(__name__)

# Placeholder value written by the infrastructure stack before a real key is set
_PLACEHOLDER_KEY = "PLACEHOLDER_UPDATE_THIS"

# ===============================================
# AWS CLIENT CONSTRUCTION
# ===============================================

def create_session(region: Optional[str] = None):
    return boto3.Session(region_name=region or AWS_REGION)


def create_dynamodb_client(session=None):
    """Low-level DynamoDB client (attribute-value format, like get_item/put_item)."""
    session = session or create_session()
    return session.client("dynamodb", config=Config(connect_timeout=5, read_timeout=30))


def create_secrets_client(session=None):
    session = session or create_session()
    return session.client("secretsmanager", config=Config(connect_timeout=5, read_timeout=10))


# ===============================================
# API GATEWAY REQUEST / RESPONSE HELPERS
# ===============================================

# CORS headers for API Gateway
cors_headers = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,X-Api-Key",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS"
}


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return int(obj) if obj == obj.to_integral_value() else float(obj)
        return super(DecimalEncoder, self).default(obj)


def json_response(status_code: int, body: Any) -> Dict[str, Any]:
    """Build an API Gateway proxy response with a JSON body."""
    return {
        "statusCode": status_code,
        "headers": dict(cors_headers),
        "body": json.dumps(body, cls=DecimalEncoder)
    }


def error_response(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    return json_response(status_code, {"error": message, **extra})


def internal_error_response() -> Dict[str, Any]:
    # Upstream details are logged by the caller, never returned to clients
    return error_response(500, "Internal server error")


def get_method_and_path(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path (supports API Gateway v1.0 and v2.0 formats)."""
    path = event.get("path") or event.get("rawPath", "")
    method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    return method.upper(), path


def is_preflight(event: Dict[str, Any]) -> bool:
    method, _ = get_method_and_path(event)
    return method == "OPTIONS"


def query_params(event: Dict[str, Any]) -> Dict[str, Any]:
    return event.get("queryStringParameters") or {}


def parse_json_body(event: Dict[str, Any], required: bool = True) -> Dict[str, Any]:
    """
    Parse the request body of an API Gateway event.

    Args:
        event: Lambda proxy event; body may be a JSON string or an already-parsed dict
        required: Raise ValidationError when the body is empty

    Returns:
        Parsed body as a dict

    Raises:
        ValidationError: Body missing (when required), not valid JSON, or not an object
    """
    body = event.get("body")
    if body is None or body == "":
        if required:
            raise ValidationError("Request body is required")
        return {}

    if isinstance(body, dict):
        return body

    try:
        payload = json.loads(body)
    except (TypeError, json.JSONDecodeError):
        raise ValidationError("Invalid JSON in request body")

    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ===============================================
# OPENROUTER ACCESS
# ===============================================

def load_openrouter_api_key(secrets_client, secret_name: str = SECRET_NAME) -> str:
    """
    Read the OpenRouter API key from Secrets Manager.

    The secret is a JSON object; both OPENROUTER_API_KEY and the older
    openrouter_api_key spelling are accepted.

    Raises:
        UpstreamError: Secret unreadable, empty, or still the placeholder value
    """
    try:
        response = secrets_client.get_secret_value(SecretId=secret_name)
    except (ClientError, BotoCoreError) as e:
        raise UpstreamError(f"Failed to read secret {secret_name}: {e}") from e

    secret_string = response.get("SecretString")
    if not secret_string:
        raise UpstreamError("Secret value is empty")

    try:
        secrets = json.loads(secret_string)
    except json.JSONDecodeError as e:
        raise UpstreamError("Secret value is not valid JSON") from e

    api_key = secrets.get("OPENROUTER_API_KEY") or secrets.get("openrouter_api_key")
    if not api_key or api_key == _PLACEHOLDER_KEY:
        raise UpstreamError("OpenRouter API key not configured")
    return api_key


class OpenRouterClient:
    """
    Minimal OpenRouter chat-completions client that expects JSON replies.

    Args:
        api_key: OpenRouter bearer token
        session: requests.Session (or compatible object with .post); a new one if None
        api_url: Chat completions endpoint
        timeout: Request timeout in seconds
    """

    def __init__(self, api_key: str, session=None, api_url: str = OPENROUTER_API_URL,
                 timeout: int = OPENROUTER_TIMEOUT):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.api_url = api_url
        self.timeout = timeout

    def chat_json(self, model: str, messages: List[Dict[str, Any]], temperature: float = 0.7,
                  max_tokens: int = 1000, title: str = "HomeHarbor") -> Tuple[Dict[str, Any], str]:
        """
        Send a chat completion request and parse the reply as a JSON object.

        Returns:
            Tuple of (parsed reply, raw reply text)

        Raises:
            UpstreamError: Transport failure, non-2xx status, or a reply that is not a JSON object
        """
        request_body = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"}
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": OPENROUTER_REFERER,
            "X-Title": title
        }

        try:
            response = self.session.post(self.api_url, json=request_body, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except requests.RequestException as e:
            raise UpstreamError(f"OpenRouter API error: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise UpstreamError(f"Unexpected OpenRouter response shape: {e}") from e

        logger.debug(f"Raw AI response ({model}): {content[:200]}")

        try:
            parsed = json.loads(content)
        except (TypeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to parse AI response as JSON: {str(content)[:200]}")
            raise UpstreamError("AI response was not valid JSON") from e

        if not isinstance(parsed, dict):
            raise UpstreamError("AI response was not a JSON object")
        return parsed, content
