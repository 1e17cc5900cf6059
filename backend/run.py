"""
Flask Application Entry Point

This script serves as the main entry point for running the Flask application.
It creates an app instance using the application factory pattern and runs
the development server.

Usage:
    Development: python run.py
    Production: gunicorn -w 4 -b 0.0.0.0:4999 "run:app"
    Flask CLI: flask --app run db upgrade
"""

import os
import sys
import logging
from app import create_app

# Configuration du logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

# Cette instance est utilisée par Gunicorn (run:app)
config_name = os.environ.get("FLASK_ENV", "development")
app = create_app(config_name)

if __name__ == '__main__':
    # Run development server
    # Port is configured in app.config (default 4999)
    port = app.config.get('FLASK_PORT', 4999)
    debug = app.config.get('DEBUG', True)

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug
    )
