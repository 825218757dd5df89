"""forum_portal パッケージ。"""

from .app import create_app
from .main import app, lambda_handler, run_local

__all__ = ["create_app", "app", "lambda_handler", "run_local"]
