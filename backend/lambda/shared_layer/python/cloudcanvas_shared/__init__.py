"""cloudcanvas_shared — Shared utilities for Cloud Canvas Lambda functions.

Provides:
    - Environment configuration
    - Password hashing and signed session tokens
    - DynamoDB document store (services + users collections)
    - Bearer-token authorization gate with admin policy
    - HTTP response envelope helpers with CORS
"""

__version__ = "1.0.0"
