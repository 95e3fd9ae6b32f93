from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from ledger import Actor, LedgerError, LedgerServices
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _actor():
    """Caller identity as forwarded by the authenticating gateway, if any."""
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        return None
    return Actor(user_id=user_id, role=request.headers.get("X-User-Role", "MANAGER"))


def _json_body():
    data = request.get_json(force=True, silent=True)
    if not data:
        raise _NoInput()
    return data


class _NoInput(Exception):
    pass


def create_app(services: LedgerServices | None = None) -> Flask:
    services = services or LedgerServices.from_settings()
    app = Flask(__name__)

    # Enable CORS for all routes
    CORS(app)

    @app.errorhandler(_NoInput)
    def no_input(e):
        return jsonify({"error": "No input data provided", "status": "failed"}), 400

    @app.errorhandler(LedgerError)
    def ledger_error(e):
        logger.error(f"{e.__class__.__name__}: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(Exception)
    def unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        # Log details but return a generic message to avoid information disclosure
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return jsonify({
            "error": "An unexpected error occurred during processing",
            "status": "failed"
        }), 500

    @app.route("/api", methods=["GET"])
    def api_info():
        """API information endpoint"""
        return jsonify({
            "status": "ok",
            "message": "Payment Reconciliation & Commission Ledger API",
            "version": "1.0",
            "environment": services.settings.environment,
            "endpoints": {
                "health": "/health [GET]",
                "record_payment": "/payments [POST]",
                "preview": "/payments/preview/<tenant_id> [GET]",
                "outstanding": "/tenants/<tenant_id>/outstanding [GET]",
                "tenant_payments": "/tenants/<tenant_id>/payments [GET]",
                "arrears": "/properties/<property_id>/arrears [GET]",
                "record_income": "/incomes [POST]",
                "commission_status": "/commissions/<commission_id>/status [PATCH]",
                "commission_invoice": "/commissions/<commission_id>/invoice [POST]",
                "commission_processing": "/commissions/<commission_id>/processing [PATCH]",
                "commission_paid": "/commissions/<commission_id>/paid [PATCH]",
                "commission": "/commissions/<commission_id> [GET]",
                "manager_commissions": "/commissions/manager/<manager_id> [GET]",
                "manager_commission_stats": "/commissions/manager/<manager_id>/stats [GET]",
                "property_commissions": "/commissions/manager/<manager_id>/property/<property_id> [GET]"
            }
        }), 200

    @app.route("/health", methods=["GET"])
    def health():
        """Health check for monitoring"""
        return jsonify({"status": "healthy"}), 200

    @app.route("/payments", methods=["POST"])
    def record_payment():
        """Record a tenant payment"""
        input_data = _json_body()
        tenant_id = input_data.get("tenant_id") or input_data.get("tenantId")
        logger.info(f"Recording payment for tenant: {tenant_id}")

        result = services.processor.process_from_dict(input_data)

        logger.info(f"Payment recorded: {result['ledger_entry']['id']}")
        return jsonify(result), 201

    @app.route("/payments/preview/<tenant_id>", methods=["GET"])
    def preview_payment(tenant_id):
        period = request.args.get("period_start")
        return jsonify(services.reports.preview_expected_charge(tenant_id, period)), 200

    @app.route("/tenants/<tenant_id>/outstanding", methods=["GET"])
    def outstanding(tenant_id):
        return jsonify(services.reports.get_outstanding(tenant_id)), 200

    @app.route("/tenants/<tenant_id>/payments", methods=["GET"])
    def tenant_payments(tenant_id):
        result = services.reports.get_payments_by_tenant(
            tenant_id, page=request.args.get("page", 1), limit=request.args.get("limit", 10)
        )
        return jsonify(result), 200

    @app.route("/properties/<property_id>/arrears", methods=["GET"])
    def arrears(property_id):
        return jsonify(services.reports.get_arrears(property_id, request.args.get("as_of"))), 200

    @app.route("/incomes", methods=["POST"])
    def record_income():
        input_data = _json_body()
        result = services.processor.record_income(
            property_id=input_data.get("property_id"),
            amount=input_data.get("amount"),
            tenant_id=input_data.get("tenant_id"),
            frequency=input_data.get("frequency", "MONTHLY"),
        )
        return jsonify(result), 201

    @app.route("/commissions/<commission_id>/status", methods=["PATCH"])
    def commission_status(commission_id):
        input_data = _json_body()
        result = services.commissions.update_status(
            commission_id,
            input_data.get("status"),
            actor=_actor(),
            notes=input_data.get("notes"),
            paid_date=input_data.get("paid_date"),
        )
        return jsonify(result), 200

    @app.route("/commissions/<commission_id>/invoice", methods=["POST"])
    def commission_invoice(commission_id):
        input_data = _json_body()
        result = services.commissions.generate_invoice(
            commission_id,
            description=input_data.get("description"),
            bank_name=input_data.get("bank_name"),
            account_name=input_data.get("account_name"),
            account_number=input_data.get("account_number"),
            actor=_actor(),
            branch=input_data.get("branch"),
            bank_code=input_data.get("bank_code"),
            swift_code=input_data.get("swift_code"),
            currency=input_data.get("currency", "KES"),
            vat_rate=input_data.get("vat_rate"),
        )
        return jsonify(result), 201

    @app.route("/commissions/<commission_id>/processing", methods=["PATCH"])
    def commission_processing(commission_id):
        return jsonify(services.commissions.mark_processing(commission_id, actor=_actor())), 200

    @app.route("/commissions/<commission_id>/paid", methods=["PATCH"])
    def commission_paid(commission_id):
        input_data = request.get_json(force=True, silent=True) or {}
        result = services.commissions.mark_paid(
            commission_id, actor=_actor(), paid_date=input_data.get("paid_date")
        )
        return jsonify(result), 200

    @app.route("/commissions/<commission_id>", methods=["GET"])
    def commission_detail(commission_id):
        return jsonify(services.commissions.get_commission(commission_id, actor=_actor())), 200

    @app.route("/commissions/manager/<manager_id>", methods=["GET"])
    def manager_commissions(manager_id):
        result = services.commissions.list_manager_commissions(
            manager_id,
            actor=_actor(),
            status=request.args.get("status"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            page=request.args.get("page", 1),
            limit=request.args.get("limit", 10),
        )
        return jsonify(result), 200

    @app.route("/commissions/manager/<manager_id>/stats", methods=["GET"])
    def manager_commission_stats(manager_id):
        return jsonify(services.commissions.get_commission_stats(manager_id, actor=_actor())), 200

    @app.route("/commissions/manager/<manager_id>/property/<property_id>", methods=["GET"])
    def property_commissions(manager_id, property_id):
        result = services.commissions.list_property_commissions(
            manager_id,
            property_id,
            actor=_actor(),
            page=request.args.get("page", 1),
            limit=request.args.get("limit", 10),
        )
        return jsonify(result), 200

    return app


if __name__ == "__main__":
    services = LedgerServices.from_settings()
    create_app(services).run(host="0.0.0.0", port=services.settings.port, debug=False)
