"""
WSGI entry point for the VinFast Dashboard gateway.

The gateway normally runs behind a hosting proxy (Render, a CDN, nginx), so the
forwarded headers are trusted for scheme and client address. That keeps
rate limiting keyed on the real client and `Secure` cookies working over TLS.

Usage with Gunicorn:
    gunicorn -c gunicorn_config.py wsgi:app
"""

import logging
import os
import sys

from werkzeug.middleware.proxy_fix import ProxyFix

from main import create_app

app = create_app()

if app is None:
    logging.error("Failed to create application. Exiting.")
    sys.exit(1)

trusted_hops = int(os.environ.get('TRUSTED_PROXY_HOPS', 1))
if trusted_hops > 0:
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=trusted_hops, x_proto=trusted_hops,
                            x_host=trusted_hops)

if __name__ == '__main__':
    # For production, use: gunicorn -c gunicorn_config.py wsgi:app
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 8000)), debug=False)
