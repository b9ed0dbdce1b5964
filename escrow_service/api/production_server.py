#!/usr/bin/env python3
"""
🚀 Production API Server for the Escrow Service
Escrow and fee routing endpoints with correlation IDs, rate limiting and
error translation at the boundary
"""

from flask import Flask, request, jsonify, g
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from ..config.production import get_config
from ..config.routing import RoutingConfig
from ..database import StoreBundle, get_stores
from ..errors import EscrowServiceError, ValidationError
from ..services import build_services, schedule_completion_job
from ..utils.production_logger import (
    LoggerFactory, bind_correlation_id, clear_correlation_id, log_performance,
)

CORS_ALLOW_HEADERS = ['Content-Type', 'Authorization', 'X-Correlation-ID']


class ProductionAPIServer:
    """Flask application exposing the escrow and fee routing services."""

    def __init__(self, config=None, stores: StoreBundle = None,
                 timer_factory=schedule_completion_job, recover_on_start: bool = True):
        self.config = config or get_config()
        LoggerFactory.set_config(self.config)

        self.app = Flask(__name__)
        self.stores = stores or get_stores(self.config)
        self.routing_config = RoutingConfig.from_defaults(self.config.routing)
        self.services = build_services(self.stores, self.routing_config, timer_factory=timer_factory)
        self.logger = LoggerFactory.get_api_logger()
        self.security_logger = LoggerFactory.get_security_logger()
        self._start_time = time.time()

        self._setup_app()
        self._setup_middleware()
        self._setup_routes()
        self._setup_error_handlers()

        if recover_on_start:
            # with automation off, not-yet-due fees wait for execute-cycle
            self.services.scheduler.recover_pending(
                reschedule=self.routing_config.current.enable_automated_mixing
            )

    def _setup_app(self):
        """Configure Flask application."""
        self.app.config['SECRET_KEY'] = self.config.api.secret_key
        self.app.config['MAX_CONTENT_LENGTH'] = self.config.api.max_content_length
        self.app.json.sort_keys = False

        # escrow and fee routing paths are open to any origin
        CORS(self.app,
             resources={
                 r"/api/escrow/*": {"origins": "*", "send_wildcard": True},
                 r"/api/fee-routing/*": {"origins": "*", "send_wildcard": True},
                 r"/api/health": {"origins": self.config.api.cors_origins},
             },
             methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
             allow_headers=CORS_ALLOW_HEADERS,
             expose_headers=['X-Correlation-ID'])

    def _setup_middleware(self):
        """Set up middleware for logging and rate limiting."""

        if self.config.security.enable_rate_limiting:
            storage_uri = (self.config.security.redis_url
                           if self.config.security.rate_limit_storage == 'redis' else 'memory://')
            self.limiter = Limiter(
                key_func=get_remote_address,
                app=self.app,
                storage_uri=storage_uri,
                default_limits=[self.config.api.rate_limit]
            )

        @self.app.before_request
        def before_request():
            """Pre-request middleware."""
            g.correlation_id = request.headers.get('X-Correlation-ID', str(uuid.uuid4()))
            g.start_time = time.time()
            bind_correlation_id(g.correlation_id)

            self.logger.debug("Incoming request",
                              method=request.method,
                              path=request.path,
                              remote_addr=request.remote_addr)

            if request.method in ['POST', 'PUT'] and request.content_length and not request.is_json:
                return jsonify({'error': 'Content-Type must be application/json',
                                'correlation_id': g.correlation_id}), 400

        @self.app.after_request
        def after_request(response):
            """Post-request middleware."""
            response_time = time.time() - getattr(g, 'start_time', time.time())
            correlation_id = getattr(g, 'correlation_id', None)
            if correlation_id:
                response.headers['X-Correlation-ID'] = correlation_id

            self.logger.log_api_request(
                method=request.method,
                path=request.path,
                status_code=response.status_code,
                response_time=response_time,
                user_id=getattr(g, 'user_id', None)
            )
            return response

        @self.app.teardown_request
        def teardown_request(error):
            clear_correlation_id()

    def _error_response(self, message: str, status_code: int, **extra):
        body = {'error': message, 'correlation_id': getattr(g, 'correlation_id', None)}
        body.update(extra)
        return jsonify(body), status_code

    def _setup_error_handlers(self):
        """Translate service errors and unexpected exceptions to JSON responses."""

        @self.app.errorhandler(EscrowServiceError)
        def service_error(error):
            if error.status_code >= 500:
                self.logger.error("Request failed", error=error.message, error_type=type(error).__name__)
                return self._error_response('Internal server error', error.status_code, details=error.message)
            self.logger.warning("Request rejected", error=error.message, error_type=type(error).__name__)
            return self._error_response(error.message, error.status_code)

        @self.app.errorhandler(429)
        def rate_limit_exceeded(error):
            self.security_logger.log_security_event(
                'rate_limit_exceeded',
                'low',
                {'ip': request.remote_addr, 'path': request.path}
            )
            return self._error_response('Rate limit exceeded', 429, message=str(error.description))

        @self.app.errorhandler(HTTPException)
        def http_error(error):
            messages = {404: 'Endpoint not found', 405: 'Method not allowed'}
            return self._error_response(messages.get(error.code, error.name), error.code)

        @self.app.errorhandler(Exception)
        def internal_error(error):
            self.logger.exception("Internal server error", error=str(error))
            return self._error_response('Internal server error', 500, details=str(error))

    def _json_body(self) -> Dict[str, Any]:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def _setup_routes(self):
        """Set up API routes."""
        escrow = self.services.escrow
        fee_routing = self.services.fee_routing

        @self.app.route('/api/health', methods=['GET'])
        def health_check():
            """Backend health check."""
            try:
                transactions_store = self.stores.transactions.describe()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                return jsonify({
                    'status': 'unhealthy',
                    'error': str(e),
                    'timestamp': datetime.now(timezone.utc).isoformat(),
                    'correlation_id': g.correlation_id
                }), 503

            healthy = transactions_store.get('db_status', 'healthy') == 'healthy'
            return jsonify({
                'status': 'healthy' if healthy else 'degraded',
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'version': self.config.version,
                'environment': self.config.environment,
                'backend': self.stores.backend,
                'database': transactions_store,
                'uptime_seconds': time.time() - self._start_time,
                'correlation_id': g.correlation_id
            }), 200 if healthy else 503

        # =====================================================
        # ESCROW ENDPOINTS
        # =====================================================

        @self.app.route('/api/escrow/transactions', methods=['GET'])
        @log_performance("get_escrow_transactions")
        def get_transactions():
            user_id = request.args.get('userId')
            g.user_id = user_id
            transactions = escrow.get_transactions(user_id)
            return jsonify({
                'success': True,
                'transactions': [transaction.to_dict() for transaction in transactions]
            }), 200

        @self.app.route('/api/escrow/fees', methods=['GET'])
        def get_fee_settings():
            return jsonify({'success': True, 'settings': escrow.get_fee_settings()}), 200

        @self.app.route('/api/escrow/create', methods=['POST'])
        @log_performance("create_escrow_transaction")
        def create_transaction():
            transaction = escrow.create(self._json_body())
            g.user_id = transaction.buyer.id
            return jsonify({'success': True, 'transaction': transaction.to_dict()}), 201

        @self.app.route('/api/escrow/message', methods=['POST'])
        def add_message():
            data = self._json_body()
            g.user_id = data.get('userId')
            message = escrow.add_message(
                data.get('transactionId'), data.get('userId'), data.get('username'), data.get('content')
            )
            return jsonify({'success': True, 'message': message.to_dict()}), 201

        @self.app.route('/api/escrow/status', methods=['PUT'])
        @log_performance("update_escrow_status")
        def update_status():
            data = self._json_body()
            transaction = escrow.update_status(data.get('transactionId'), data.get('status'))
            return jsonify({'success': True, 'transaction': transaction.to_dict()}), 200

        @self.app.route('/api/escrow/fees', methods=['PUT'])
        def update_fee_settings():
            data = self._json_body()
            g.user_id = data.get('userId')
            settings = escrow.update_fee_settings(data.get('fees'), data.get('userId'))
            return jsonify({'success': True, 'settings': settings.to_dict()}), 200

        # =====================================================
        # FEE ROUTING ENDPOINTS
        # =====================================================

        @self.app.route('/api/fee-routing/route-fee', methods=['POST'])
        def route_fee():
            data = self._json_body()
            result = fee_routing.route_fee(
                data.get('sourceTransactionId'), data.get('amount'), data.get('vendorId')
            )
            return jsonify({'success': True, **result}), 200

        @self.app.route('/api/fee-routing/status', methods=['GET'])
        def routing_status():
            return jsonify(fee_routing.get_status()), 200

        @self.app.route('/api/fee-routing/transaction-status', methods=['GET'])
        def transaction_status():
            return jsonify(fee_routing.get_transaction_status(request.args.get('transactionId'))), 200

        @self.app.route('/api/fee-routing/vendor-summary', methods=['GET'])
        def vendor_summary():
            return jsonify(fee_routing.get_vendor_summary(request.args.get('vendorId'))), 200

        @self.app.route('/api/fee-routing/execute-cycle', methods=['POST'])
        def execute_cycle():
            result = fee_routing.execute_cycle()
            return jsonify({'success': True, 'message': 'Cycle executed', **result}), 200

        @self.app.route('/api/fee-routing/config', methods=['GET'])
        def get_routing_config():
            return jsonify(fee_routing.get_config()), 200

        @self.app.route('/api/fee-routing/config', methods=['PUT'])
        def update_routing_config():
            config = fee_routing.update_config(self._json_body())
            return jsonify({'success': True, 'config': config}), 200

    def run(self):
        """Run the development server."""
        self.logger.info("Starting Escrow Service API Server",
                         host=self.config.api.host,
                         port=self.config.api.port,
                         environment=self.config.environment,
                         version=self.config.version,
                         backend=self.stores.backend)

        self.app.run(
            host=self.config.api.host,
            port=self.config.api.port,
            debug=self.config.api.debug,
            threaded=True
        )


def create_production_server(config=None, **kwargs) -> ProductionAPIServer:
    """Factory function to create the API server."""
    return ProductionAPIServer(config, **kwargs)
