"""Run the audit engine HTTP surface.

Usage:
    AUDIT_SECRET_KEY=... AUDIT_PORT=8470 python -m audit_engine

Reads every other setting from the AUDIT_* environment variables and exits
with status 2 when the signing secret is missing or invalid.
"""

import os
import sys

import uvicorn

from .api.app import create_app
from .config.settings import AuditSettings, SecretValidationError
from .observability.logging import configure_logging


def main():
    configure_logging()
    host = os.environ.get("AUDIT_HOST", "127.0.0.1")
    port = int(os.environ.get("AUDIT_PORT", "8470"))
    settings = AuditSettings.from_env()

    try:
        app = create_app(settings=settings)
    except SecretValidationError as exc:
        print(f"Refusing to start: {exc}", file=sys.stderr)
        sys.exit(2)

    print(f"Audit engine starting on http://{host}:{port}")
    print(f"Environment: {settings.environment}")
    print(f"Persistence: {settings.persistence}")

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
