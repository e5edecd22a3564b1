"""
auth — User authentication module.

Provides:
  • Signed ``auth_token`` cookies (HMAC-SHA256) and managed sessions
  • Password hashing (bcrypt)
  • Register / Login / Check / Logout API routes
  • ``get_current_identity`` and ``require_resource_owner`` FastAPI dependencies
"""
