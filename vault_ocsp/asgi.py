import logging
import os

from vault_ocsp import is_dev
from vault_ocsp.config import Config
from vault_ocsp.crypto import ResponderIdentity
from vault_ocsp.logging import configure_logging
from vault_ocsp.web import create_app

log_level = logging.DEBUG if is_dev() else logging.INFO

configure_logging(log_level, os.getenv("VAULT_OCSP_LOG_FILES"))

config = Config.from_env()

app = create_app(
    config, ResponderIdentity.load(config.responder_cert, config.responder_key)
)
