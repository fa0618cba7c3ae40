"""
auth — User authentication module.

Provides:
  • Password hashing (bcrypt, configurable cost)
  • JWT session token issue & verification
  • Registration / login service and API routes
  • ``get_current_user_id`` / ``get_current_user`` FastAPI dependencies
"""
