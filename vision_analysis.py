"""
vision_analysis.py - Lambda function for AI analysis of property photos

POST /analyze
Body: {
    "property_id": "ct-2100123",
    "image_url": "https://.../front.jpg",
    "force_refresh": false
}

Pipeline:
1. Validate request (property_id and image_url required)
2. Return the cached analysis unless force_refresh is set
3. Load the OpenRouter key from Secrets Manager
4. Ask the vision model for structured JSON insights about the exterior
5. Normalize scores/levels/lists so the frontend always gets the same shape
6. Cache the result (90-day TTL) and return it

Cost: one vision call per property; cache hits are free.
"""

import logging
import math
import os
import re
from typing import Any, Dict

from cache_utils import ANALYSIS_VISION, VISION_TTL_DAYS, cache_insight, get_cached_insight
from common import (
    VISION_MODEL_ID, OpenRouterClient, create_dynamodb_client, create_secrets_client,
    error_response, internal_error_response, is_preflight, json_response,
    load_openrouter_api_key, parse_json_body, utc_now_iso
)
from errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)
logger.setLevel(os.getenv("LOG_LEVEL", "INFO"))

VISION_PROMPT = """Analyze this residential property photo and provide detailed insights in JSON format with the following fields:

{
  "architectural_style": "Describe the architectural style (e.g., Colonial, Ranch, Victorian, Contemporary, Craftsman, etc.)",
  "exterior_condition": <number 1-10>,
  "visible_features": ["List visible features like garage, porch, deck, landscaping, driveway, etc."],
  "curb_appeal_score": <number 1-10>,
  "maintenance_level": "Low | Medium | High",
  "neighborhood_quality": "Describe visible neighborhood indicators (street quality, surrounding homes, etc.)",
  "estimated_age": "Approximate age or era of construction",
  "notable_highlights": ["List positive aspects and selling points"],
  "potential_concerns": ["List any visible maintenance issues or concerns"]
}

Be specific and detailed. Base your analysis only on what is visible in the image."""

_LEADING_NUMBER = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+))")


def normalize_score(score: Any) -> int:
    """
    Coerce a model-reported score into an integer from 1 to 10.

    Accepts numbers or strings with a leading number ("7", "7.5", "8/10").
    Anything unreadable becomes the neutral midpoint 5.
    """
    if isinstance(score, bool):
        return 5
    if isinstance(score, (int, float)):
        num = float(score)
    else:
        match = _LEADING_NUMBER.match(str(score)) if score is not None else None
        if not match:
            return 5
        num = float(match.group(1))

    if math.isnan(num):
        return 5
    if math.isinf(num):
        return 10 if num > 0 else 1
    # Round half up
    return max(1, min(10, int(math.floor(num + 0.5))))


def normalize_maintenance_level(level: Any) -> str:
    if isinstance(level, str):
        normalized = level.lower()
        if "low" in normalized:
            return "Low"
        if "high" in normalized:
            return "High"
    return "Medium"


def _string_list(value: Any) -> list:
    return [str(v) for v in value if v] if isinstance(value, list) else []


def normalize_insights(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Fill defaults and clamp values in a raw model reply."""
    return {
        "architectural_style": raw.get("architectural_style") or "Unknown",
        "exterior_condition": normalize_score(raw.get("exterior_condition")),
        "visible_features": _string_list(raw.get("visible_features")),
        "curb_appeal_score": normalize_score(raw.get("curb_appeal_score")),
        "maintenance_level": normalize_maintenance_level(raw.get("maintenance_level")),
        "neighborhood_quality": raw.get("neighborhood_quality") or "Not visible in image",
        "estimated_age": raw.get("estimated_age") or "Unknown",
        "notable_highlights": _string_list(raw.get("notable_highlights")),
        "potential_concerns": _string_list(raw.get("potential_concerns")),
    }


def analyze_property_image(client: OpenRouterClient, image_url: str, model: str = VISION_MODEL_ID) -> Dict[str, Any]:
    """
    Run the vision model on one image URL.

    Args:
        client: OpenRouter client
        image_url: Publicly reachable image URL
        model: Vision model ID

    Returns:
        Normalized insights dict

    Raises:
        UpstreamError: OpenRouter call failed or returned non-JSON
    """
    logger.info(f"Analyzing image: {image_url[:80]}")

    messages = [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": VISION_PROMPT},
                {"type": "image_url", "image_url": {"url": image_url}}
            ]
        }
    ]

    raw, _ = client.chat_json(model, messages, temperature=0.7, max_tokens=1000,
                              title="HomeHarbor AI Property Analysis")
    return normalize_insights(raw)


def handler(event, context, dynamodb_client=None, secrets_client=None, http_session=None):
    """
    AWS Lambda handler for property photo analysis.

    Clients are built from the environment when not supplied.

    Returns:
        API Gateway proxy response:
        {"property_id", "insights", "cached", "model", "analyzed_at"}
    """
    if is_preflight(event):
        return json_response(200, {})

    logger.info("Vision analysis requested")

    try:
        request = parse_json_body(event)

        property_id = request.get("property_id")
        image_url = request.get("image_url")
        if not property_id or not image_url:
            raise ValidationError("property_id and image_url are required")

        dynamodb_client = dynamodb_client or create_dynamodb_client()

        # Check cache unless force refresh
        if not request.get("force_refresh"):
            cached = get_cached_insight(dynamodb_client, property_id, ANALYSIS_VISION)
            if cached:
                logger.info(f"Found cached analysis for property: {property_id}")
                return json_response(200, {
                    "property_id": property_id,
                    "insights": cached,
                    "cached": True,
                    "model": VISION_MODEL_ID,
                    "analyzed_at": utc_now_iso()
                })

        api_key = load_openrouter_api_key(secrets_client or create_secrets_client())
        client = OpenRouterClient(api_key, session=http_session)

        insights = analyze_property_image(client, image_url)
        cache_insight(dynamodb_client, property_id, ANALYSIS_VISION, insights,
                      model=VISION_MODEL_ID, ttl_days=VISION_TTL_DAYS)

        return json_response(200, {
            "property_id": property_id,
            "insights": insights,
            "cached": False,
            "model": VISION_MODEL_ID,
            "analyzed_at": utc_now_iso()
        })

    except ValidationError as e:
        return error_response(400, str(e))
    except UpstreamError as e:
        logger.error(f"Vision analysis failed: {e}", exc_info=True)
        return internal_error_response()
    except Exception as e:
        logger.error(f"Unexpected error analyzing property image: {e}", exc_info=True)
        return internal_error_response()
