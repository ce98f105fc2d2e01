#!/usr/bin/env python3
"""
Flask app for running the HomeHarbor Lambda handlers locally.

Each route turns the Flask request into an API Gateway proxy event and calls
the same handler the deployed Lambda uses, so responses match production.

Usage:
    python3 app.py

Then try:
    curl "http://localhost:5000/search?city=Hartford&sortBy=price&sortOrder=desc&limit=5"
"""

from flask import Flask, Response, jsonify, request

import description_generator
import vision_analysis
from enrichment import bulk_enrich_handler, enrich_handler
from search import get_property_handler, properties_handler, search_handler


def to_lambda_event(path_parameters=None):
    """Build an API Gateway (REST, v1) proxy event from the current Flask request."""
    body = request.get_data(as_text=True)
    return {
        "httpMethod": request.method,
        "path": request.path,
        "headers": dict(request.headers),
        "queryStringParameters": request.args.to_dict() or None,
        "pathParameters": path_parameters,
        "body": body or None,
        "isBase64Encoded": False
    }


def to_flask_response(result):
    headers = dict(result.get("headers") or {})
    return Response(result.get("body", ""), status=result.get("statusCode", 200), headers=headers)


def create_app(store=None, cama=None, dynamodb_client=None, secrets_client=None, http_session=None):
    """
    Create the dev server. Collaborators are optional; anything not passed is
    built from the environment on first use, the same as in Lambda.
    """
    app = Flask(__name__)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    @app.route('/search')
    def search():
        return to_flask_response(search_handler(to_lambda_event(), None, store=store, cama=cama))

    @app.route('/properties')
    def properties():
        return to_flask_response(properties_handler(to_lambda_event(), None, store=store))

    @app.route('/properties/<property_id>')
    def get_property(property_id):
        event = to_lambda_event(path_parameters={'id': property_id})
        return to_flask_response(get_property_handler(event, None, store=store))

    @app.route('/analyze', methods=['POST', 'OPTIONS'])
    def analyze():
        result = vision_analysis.handler(to_lambda_event(), None, dynamodb_client=dynamodb_client,
                                         secrets_client=secrets_client, http_session=http_session)
        return to_flask_response(result)

    @app.route('/describe', methods=['POST', 'OPTIONS'])
    def describe():
        result = description_generator.handler(to_lambda_event(), None, dynamodb_client=dynamodb_client,
                                               secrets_client=secrets_client, http_session=http_session)
        return to_flask_response(result)

    @app.route('/enrich')
    def enrich():
        return to_flask_response(enrich_handler(to_lambda_event(), None, cama=cama))

    @app.route('/enrich/bulk')
    def enrich_bulk():
        return to_flask_response(bulk_enrich_handler(to_lambda_event(), None, cama=cama))

    return app


if __name__ == '__main__':
    create_app().run(debug=True, port=5000)
