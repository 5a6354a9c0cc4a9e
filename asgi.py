"""
asgi.py -- Process bootstrap for docauth.

The only place that reads configuration from the environment. Everything
below it receives the Settings object explicitly, so importing api/ or auth/
never touches os.environ. A missing required option fails here, at startup.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
