"""
HolyLoy ledger entry point.
"""
import os
import sys
import logging

from holyloy import create_app
from holyloy.config import validate_config

logger = logging.getLogger('holyloy.run')

config_name = os.getenv('FLASK_ENV', 'production')

try:
    validate_config(config_name)
    app = create_app(config_name)
    logger.info(f"[HolyLoy] App created ({config_name}), {len(list(app.url_map.iter_rules()))} routes")
except Exception as e:
    logger.exception(f"[HolyLoy] FATAL ERROR during app creation: {e}")
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development'
    )
