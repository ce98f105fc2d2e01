"""
description_generator.py - Lambda function for AI-written listing descriptions

POST /describe
Body: {
    "property_id": "ct-2100123",
    "property_data": {"address": "...", "city": "...", "state": "CT", "price": 425000, ...},
    "market_data": {"median_market_price": 390000, ...},     # optional
    "vision_insights": {...},                                 # optional, from /analyze
    "force_refresh": false
}

Combines property facts, market context and vision insights into one prompt,
asks the description model for structured JSON copy, and caches the result
for 30 days.
"""

import logging
import os
from typing import Any, Dict, Optional

from cache_utils import ANALYSIS_DESCRIPTION, DESCRIPTION_TTL_DAYS, cache_insight, get_cached_insight
from common import (
    DESCRIPTION_MODEL_ID, OpenRouterClient, create_dynamodb_client, create_secrets_client,
    error_response, internal_error_response, is_preflight, json_response,
    load_openrouter_api_key, parse_json_body, utc_now_iso
)
from errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)
logger.setLevel(os.getenv("LOG_LEVEL", "INFO"))


def _money(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"${value:,.0f}"
    return "Unknown"


def _or_unknown(value: Any) -> Any:
    return value if value not in (None, "", 0) else "Unknown"


def build_description_prompt(property_data: Dict[str, Any], market_data: Optional[Dict[str, Any]] = None,
                             vision_insights: Optional[Dict[str, Any]] = None) -> str:
    """Assemble the copywriting prompt from property, market and vision context."""
    sqft = property_data.get("sqft")
    sqft_text = f"{sqft:,} sqft" if isinstance(sqft, (int, float)) and sqft else "Unknown"

    location = ", ".join(str(p) for p in (property_data.get("address"), property_data.get("city"),
                                          property_data.get("state")) if p)

    property_context = f"""
Property Details:
- Address: {location or 'Unknown'}
- Price: {_money(property_data.get('price'))}
- Bedrooms: {_or_unknown(property_data.get('bedrooms'))}
- Bathrooms: {_or_unknown(property_data.get('bathrooms'))}
- Square Footage: {sqft_text}
- Property Type: {property_data.get('property_type') or property_data.get('propertyType') or 'Residential'}
- Year Built: {_or_unknown(property_data.get('year_built'))}
"""

    market_context = ""
    if market_data:
        market_context = f"""
Market Context:
- Median Market Price: {_money(market_data.get('median_market_price'))}
- Median Days on Market: {_or_unknown(market_data.get('median_days_on_market'))} days
- Market Trend: {market_data.get('market_trend') or 'Stable'}
"""

    vision_context = ""
    if vision_insights:
        vision_context = f"""
Visual Analysis:
- Architectural Style: {vision_insights.get('architectural_style', 'Unknown')}
- Exterior Condition: {vision_insights.get('exterior_condition', 'Unknown')}/10
- Curb Appeal: {vision_insights.get('curb_appeal_score', 'Unknown')}/10
- Visible Features: {', '.join(vision_insights.get('visible_features') or [])}
- Highlights: {', '.join(vision_insights.get('notable_highlights') or [])}
"""

    return f"""You are a professional real estate copywriter. Generate a compelling property listing description based on the following information:
{property_context}
{market_context}
{vision_context}
Create a JSON response with the following structure:
{{
  "headline": "Catchy 8-12 word headline that highlights the key selling point",
  "summary": "Engaging 2-3 sentence overview that captures attention",
  "highlights": ["List 4-6 key features and benefits"],
  "market_position": "1-2 sentences about how this property compares to the market",
  "neighborhood_context": "1-2 sentences about the location and community",
  "full_description": "2-3 paragraph detailed description that tells a story and creates an emotional connection"
}}

Guidelines:
- Be enthusiastic but honest
- Focus on benefits, not just features
- Use vivid, descriptive language
- Highlight unique selling points
- Maintain professional tone
- Avoid cliches and overused phrases"""


def normalize_description(raw: Dict[str, Any]) -> Dict[str, Any]:
    summary = raw.get("summary") or ""
    highlights = raw.get("highlights")
    return {
        "headline": raw.get("headline") or "Beautiful Property Available",
        "summary": summary,
        "highlights": [str(h) for h in highlights if h] if isinstance(highlights, list) else [],
        "market_position": raw.get("market_position") or "",
        "neighborhood_context": raw.get("neighborhood_context") or "",
        "full_description": raw.get("full_description") or summary,
    }


def generate_description(client: OpenRouterClient, property_data: Dict[str, Any],
                         market_data: Optional[Dict[str, Any]] = None,
                         vision_insights: Optional[Dict[str, Any]] = None,
                         model: str = DESCRIPTION_MODEL_ID) -> Dict[str, Any]:
    """
    Generate listing copy for one property.

    Raises:
        UpstreamError: OpenRouter call failed or returned non-JSON
    """
    prompt = build_description_prompt(property_data, market_data, vision_insights)
    raw, _ = client.chat_json(model, [{"role": "user", "content": prompt}], temperature=0.8,
                              max_tokens=2000, title="HomeHarbor AI Property Descriptions")
    return normalize_description(raw)


def handler(event, context, dynamodb_client=None, secrets_client=None, http_session=None):
    """
    AWS Lambda handler for property description generation.

    Returns:
        API Gateway proxy response:
        {"property_id", "description", "cached", "model", "generated_at"}
    """
    if is_preflight(event):
        return json_response(200, {})

    logger.info("Property description generation requested")

    try:
        request = parse_json_body(event)

        property_id = request.get("property_id")
        property_data = request.get("property_data")
        if not property_id or not property_data:
            raise ValidationError("property_id and property_data are required")
        if not isinstance(property_data, dict):
            raise ValidationError("property_data must be an object")

        dynamodb_client = dynamodb_client or create_dynamodb_client()

        if not request.get("force_refresh"):
            cached = get_cached_insight(dynamodb_client, property_id, ANALYSIS_DESCRIPTION)
            if cached:
                logger.info(f"Found cached description for property: {property_id}")
                return json_response(200, {
                    "property_id": property_id,
                    "description": cached,
                    "cached": True,
                    "model": DESCRIPTION_MODEL_ID,
                    "generated_at": utc_now_iso()
                })

        api_key = load_openrouter_api_key(secrets_client or create_secrets_client())
        client = OpenRouterClient(api_key, session=http_session)

        logger.info(f"Generating description for property: {property_id}")
        market_data = request.get("market_data")
        vision_insights = request.get("vision_insights")
        description = generate_description(
            client,
            property_data,
            market_data=market_data if isinstance(market_data, dict) else None,
            vision_insights=vision_insights if isinstance(vision_insights, dict) else None
        )
        cache_insight(dynamodb_client, property_id, ANALYSIS_DESCRIPTION, description,
                      model=DESCRIPTION_MODEL_ID, ttl_days=DESCRIPTION_TTL_DAYS)

        return json_response(200, {
            "property_id": property_id,
            "description": description,
            "cached": False,
            "model": DESCRIPTION_MODEL_ID,
            "generated_at": utc_now_iso()
        })

    except ValidationError as e:
        return error_response(400, str(e))
    except UpstreamError as e:
        logger.error(f"Description generation failed: {e}", exc_info=True)
        return internal_error_response()
    except Exception as e:
        logger.error(f"Unexpected error generating description: {e}", exc_info=True)
        return internal_error_response()
