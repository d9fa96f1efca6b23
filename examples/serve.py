"""
HTTP service.

Configuration comes from FIATRAILS_* environment variables, see
Settings.from_env(). The ledger defaults to the in-memory one.

Run yourself with uvicorn:
    FIATRAILS_CLIENT_SECRET=c FIATRAILS_WEBHOOK_SECRET=w \
        uvicorn examples.serve:app
"""

from fiatrails.api import create_app

app = create_app()
