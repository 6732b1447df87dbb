import logging

from flask_restx import Namespace, Resource

from vfdashboard.application.errors import GatewayError
from vfdashboard.application.telemetry_service import telemetry_service
from vfdashboard.presentation.auth_routes import limiter, session_required

logger = logging.getLogger(__name__)

api = Namespace('telemetry', description='Vehicle telemetry snapshots')


@api.route('/<string:vin>')
@api.doc(params={'vin': 'Vehicle identification number'})
class TelemetrySnapshot(Resource):
    @api.doc('get_telemetry')
    @limiter.limit("10 per minute")
    @session_required
    def get(self, vin, credentials):
        """Batch read of the mapped telemetry fields for one vehicle"""
        try:
            return {'data': telemetry_service.snapshot(credentials, vin)}, 200
        except GatewayError as e:
            logger.error(f"Telemetry for {vin} failed: {e.code}")
            return e.to_response()
