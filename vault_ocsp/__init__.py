import os


def is_dev() -> bool:
    return bool(os.getenv("DEV"))


def get_version() -> str:
    return os.getenv("VAULT_OCSP_VERSION", "dev")
