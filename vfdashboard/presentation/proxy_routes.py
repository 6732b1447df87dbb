import logging

from flask import Response, request
from flask_restx import Namespace, Resource

from vfdashboard.application.errors import GatewayError
from vfdashboard.application.proxy_service import proxy_service
from vfdashboard.application.session_cookies import read_credentials

logger = logging.getLogger(__name__)

api = Namespace('proxy', description='Allow-listed relay to the VinFast mobile API')


def relay(path):
    credentials = read_credentials(request)
    region = request.args.get('region') or credentials.region

    try:
        result = proxy_service.forward(
            request.method,
            path,
            credentials.access_token,
            query=list(request.args.items(multi=True)),
            body=request.get_data(),
            vin=request.headers.get('x-vin-code') or credentials.vin,
            player_id=request.headers.get('x-player-identifier') or credentials.user_id,
            region=region,
            content_type=request.headers.get('Content-Type'),
        )
    except GatewayError as e:
        return e.to_response()

    return Response(result.content, status=result.status_code, content_type=result.content_type)


@api.route('/<path:path>')
@api.doc(params={'path': 'Vendor path, must start with an allow-listed prefix',
                 'region': 'Region code (vn, us, eu)'})
class Proxy(Resource):
    def get(self, path):
        return relay(path)

    def post(self, path):
        return relay(path)

    def put(self, path):
        return relay(path)

    def patch(self, path):
        return relay(path)

    def delete(self, path):
        return relay(path)
