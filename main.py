from flask import Flask, jsonify
from flask_restx import Api
from flask_cors import CORS
from vfdashboard.presentation.auth_routes import api as auth_ns, limiter
from vfdashboard.presentation.proxy_routes import api as proxy_ns
from vfdashboard.presentation.telemetry_routes import api as telemetry_ns
from config import Config
import logging
import sys


# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format=
    '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)])

logger = logging.getLogger(__name__)


def verify_signing_configuration():
    """Warn at startup when signed endpoint families cannot be used"""
    missing = [name for name, value in (
        ('VINFAST_X_HASH_SECRET', Config.X_HASH_SECRET),
        ('VINFAST_X_HASH_2_SECRET', Config.X_HASH_2_SECRET),
    ) if not value]
    if missing:
        logger.error(
            f"Signing secrets not configured ({', '.join(missing)}); calls to "
            f"{', '.join(Config.SIGNED_PREFIXES)} will fail with 'server misconfigured'")
        return False
    return True


def create_app():
    """Create and configure the Flask application"""
    try:
        app = Flask(__name__)
        app.config.from_object(Config)

        verify_signing_configuration()

        # Initialize CORS, credentials travel as cookies
        CORS(app,
             origins=Config.CORS_ORIGINS,
             supports_credentials=True,
             allow_headers=['Content-Type', 'x-vin-code', 'x-player-identifier'],
             methods=['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS'])
        logger.info(f"CORS enabled for origins: {Config.CORS_ORIGINS}")

        @app.route('/health')
        def health():
            return jsonify({'status': 'ok', 'service': 'VinFast Dashboard BFF'})

        api = Api(app,
                  title='VinFast Dashboard Gateway',
                  version='1.0',
                  description='Session broker and signed, allow-listed relay to the VinFast connected-car API.',
                  doc='/docs')

        # Initialize limiter with storage URL from config
        limiter.init_app(app)
        if Config.RATELIMIT_STORAGE_URL.startswith('memory://'):
            logger.warning("⚠️  Rate limiting using in-memory storage - not recommended for production!")
            logger.warning("   Set RATELIMIT_STORAGE_URL environment variable to use Redis/Memcached")
        else:
            logger.info(f"Rate limiting configured with: {Config.RATELIMIT_STORAGE_URL}")

        # Add namespaces
        api.add_namespace(auth_ns, path='/api')
        api.add_namespace(proxy_ns, path='/api/proxy')
        api.add_namespace(telemetry_ns, path='/api/telemetry')

        return app
    except Exception as e:
        logger.error(f"Error creating Flask application: {str(e)}")
        return None


if __name__ == '__main__':
    app = create_app()
    if app:
        logger.info("Starting Flask application...")
        app.run(host='0.0.0.0', port=Config.PORT)
    else:
        logger.error("Failed to create Flask application")
        sys.exit(1)
