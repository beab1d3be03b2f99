# Supabase Auth
# This module uses Supabase's built-in authentication system
# No custom tables are required - Supabase Auth handles:
# - User registration (auth.users table)
# - Email confirmation before the first session when enabled on the project
# - User login and session management
# - JWT token generation and validation
# - Password hashing and security

"""
Supabase Auth provides:
- auth.sign_up() - Register new users (username/display_name go in user_metadata)
- auth.sign_in_with_password() - Authenticate users
- auth.get_session() / auth.set_session() - Session held by a client instance
- auth.get_user() - Get current user from JWT token
- auth.sign_out() / auth.admin.sign_out() - Logout users

The public profile row (users table) is created from user_metadata by a
database trigger; see app/modules/users/models.py.
"""
