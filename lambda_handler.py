"""
AWS Lambda handler for the Payment Ledger API.

This is the production entry point for AWS Lambda deployments.
For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging
import re

from ledger import Actor, LedgerError, LedgerServices

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Initialize services (reused across warm invocations)
services = LedgerServices.from_settings()
ENVIRONMENT = services.settings.environment

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-User-Id,X-User-Role",
    "Access-Control-Allow-Methods": "GET,POST,PATCH,OPTIONS",
}


class BadRequest(Exception):
    pass


def _response(status_code, body):
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body)}


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles API Gateway events for every ledger route plus OPTIONS
    (CORS preflight).
    """
    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    # Route to appropriate handler
    for method, pattern, handler in ROUTES:
        match = pattern.match(path)
        if match and method == http_method:
            return _dispatch(handler, event, match.groupdict())
    return _response(404, {"error": "Not found", "path": path})


def _dispatch(handler, event, params):
    try:
        return handler(event, **params)

    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return _response(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})

    except BadRequest as e:
        return _response(400, {"error": str(e), "status": "failed"})

    except LedgerError as e:
        logger.error(f"{e.__class__.__name__}: {e.message}")
        return _response(e.http_status, e.to_dict())

    except (KeyError, TypeError) as e:
        # Missing fields or wrong types in the request body
        logger.error(f"Validation error: {str(e)}")
        return _response(400, {"error": f"Validation error: {str(e)}", "status": "validation_failed"})

    except Exception as e:
        # Unexpected errors - log details but return generic message to avoid information disclosure
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return _response(500, {"error": "An unexpected error occurred during processing", "status": "failed"})


def _body(event):
    body = event.get("body", "")
    if isinstance(body, str):
        if not body:
            raise BadRequest("No input data provided")
        # Handle base64 encoded body (API Gateway)
        if event.get("isBase64Encoded"):
            body = base64.b64decode(body).decode("utf-8")
        body = json.loads(body)
    if not body:
        raise BadRequest("No input data provided")
    return body


def _optional_body(event):
    if not event.get("body"):
        return {}
    return _body(event)


def _query(event):
    return event.get("queryStringParameters") or {}


def _actor(event):
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    user_id = headers.get("x-user-id")
    if not user_id:
        return None
    return Actor(user_id=user_id, role=headers.get("x-user-role", "MANAGER"))


def handle_health(event):
    """Health check endpoint."""
    return _response(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info(event):
    """API information endpoint."""
    return _response(200, {
        "status": "ok",
        "message": "Payment Reconciliation & Commission Ledger API",
        "version": "1.0",
        "environment": ENVIRONMENT,
        "runtime": "AWS Lambda",
        "endpoints": {
            "health": "/health [GET]",
            "record_payment": "/payments [POST]",
            "preview": "/payments/preview/{tenant_id} [GET]",
            "outstanding": "/tenants/{tenant_id}/outstanding [GET]",
            "tenant_payments": "/tenants/{tenant_id}/payments [GET]",
            "arrears": "/properties/{property_id}/arrears [GET]",
            "record_income": "/incomes [POST]",
            "commission_status": "/commissions/{commission_id}/status [PATCH]",
            "commission_invoice": "/commissions/{commission_id}/invoice [POST]",
            "commission_processing": "/commissions/{commission_id}/processing [PATCH]",
            "commission_paid": "/commissions/{commission_id}/paid [PATCH]",
            "commission": "/commissions/{commission_id} [GET]",
            "manager_commissions": "/commissions/manager/{manager_id} [GET]",
            "manager_commission_stats": "/commissions/manager/{manager_id}/stats [GET]",
            "property_commissions": "/commissions/manager/{manager_id}/property/{property_id} [GET]",
        },
    })


def handle_record_payment(event):
    """Record a tenant payment."""
    input_data = _body(event)
    tenant_id = input_data.get("tenant_id") or input_data.get("tenantId")
    logger.info(f"Recording payment for tenant: {tenant_id}")

    result = services.processor.process_from_dict(input_data)

    logger.info(f"Payment recorded: {result['ledger_entry']['id']}")
    return _response(201, result)


def handle_preview(event, tenant_id):
    return _response(200, services.reports.preview_expected_charge(tenant_id, _query(event).get("period_start")))


def handle_outstanding(event, tenant_id):
    return _response(200, services.reports.get_outstanding(tenant_id))


def handle_arrears(event, property_id):
    return _response(200, services.reports.get_arrears(property_id, _query(event).get("as_of")))


def handle_record_income(event):
    input_data = _body(event)
    return _response(201, services.processor.record_income(
        property_id=input_data.get("property_id"),
        amount=input_data.get("amount"),
        tenant_id=input_data.get("tenant_id"),
        frequency=input_data.get("frequency", "MONTHLY"),
    ))


def handle_commission_status(event, commission_id):
    input_data = _body(event)
    return _response(200, services.commissions.update_status(
        commission_id,
        input_data.get("status"),
        actor=_actor(event),
        notes=input_data.get("notes"),
        paid_date=input_data.get("paid_date"),
    ))


def handle_commission_invoice(event, commission_id):
    input_data = _body(event)
    return _response(201, services.commissions.generate_invoice(
        commission_id,
        description=input_data.get("description"),
        bank_name=input_data.get("bank_name"),
        account_name=input_data.get("account_name"),
        account_number=input_data.get("account_number"),
        actor=_actor(event),
        branch=input_data.get("branch"),
        bank_code=input_data.get("bank_code"),
        swift_code=input_data.get("swift_code"),
        currency=input_data.get("currency", "KES"),
        vat_rate=input_data.get("vat_rate"),
    ))


def handle_tenant_payments(event, tenant_id):
    query = _query(event)
    return _response(200, services.reports.get_payments_by_tenant(
        tenant_id, page=query.get("page", 1), limit=query.get("limit", 10)
    ))


def handle_commission_processing(event, commission_id):
    return _response(200, services.commissions.mark_processing(commission_id, actor=_actor(event)))


def handle_commission_paid(event, commission_id):
    input_data = _optional_body(event)
    return _response(200, services.commissions.mark_paid(
        commission_id, actor=_actor(event), paid_date=input_data.get("paid_date")
    ))


def handle_commission(event, commission_id):
    return _response(200, services.commissions.get_commission(commission_id, actor=_actor(event)))


def handle_manager_commissions(event, manager_id):
    query = _query(event)
    return _response(200, services.commissions.list_manager_commissions(
        manager_id,
        actor=_actor(event),
        status=query.get("status"),
        start_date=query.get("start_date"),
        end_date=query.get("end_date"),
        page=query.get("page", 1),
        limit=query.get("limit", 10),
    ))


def handle_manager_commission_stats(event, manager_id):
    return _response(200, services.commissions.get_commission_stats(manager_id, actor=_actor(event)))


def handle_property_commissions(event, manager_id, property_id):
    query = _query(event)
    return _response(200, services.commissions.list_property_commissions(
        manager_id,
        property_id,
        actor=_actor(event),
        page=query.get("page", 1),
        limit=query.get("limit", 10),
    ))


ROUTES = [
    ("GET", re.compile(r"^/health$"), handle_health),
    ("GET", re.compile(r"^/api$"), handle_api_info),
    ("POST", re.compile(r"^/payments$"), handle_record_payment),
    ("GET", re.compile(r"^/payments/preview/(?P<tenant_id>[^/]+)$"), handle_preview),
    ("GET", re.compile(r"^/tenants/(?P<tenant_id>[^/]+)/outstanding$"), handle_outstanding),
    ("GET", re.compile(r"^/properties/(?P<property_id>[^/]+)/arrears$"), handle_arrears),
    ("POST", re.compile(r"^/incomes$"), handle_record_income),
    ("PATCH", re.compile(r"^/commissions/(?P<commission_id>[^/]+)/status$"), handle_commission_status),
    ("POST", re.compile(r"^/commissions/(?P<commission_id>[^/]+)/invoice$"), handle_commission_invoice),
    ("GET", re.compile(r"^/tenants/(?P<tenant_id>[^/]+)/payments$"), handle_tenant_payments),
    ("PATCH", re.compile(r"^/commissions/(?P<commission_id>[^/]+)/processing$"), handle_commission_processing),
    ("PATCH", re.compile(r"^/commissions/(?P<commission_id>[^/]+)/paid$"), handle_commission_paid),
    ("GET", re.compile(r"^/commissions/manager/(?P<manager_id>[^/]+)$"), handle_manager_commissions),
    ("GET", re.compile(r"^/commissions/manager/(?P<manager_id>[^/]+)/stats$"), handle_manager_commission_stats),
    ("GET", re.compile(r"^/commissions/manager/(?P<manager_id>[^/]+)/property/(?P<property_id>[^/]+)$"),
     handle_property_commissions),
    ("GET", re.compile(r"^/commissions/(?P<commission_id>[^/]+)$"), handle_commission),
]
