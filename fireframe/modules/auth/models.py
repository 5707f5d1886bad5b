# Supabase Auth
# Identities live in Supabase's auth.users table; FireFrame keeps its own
# profile row per identity in the public users table (see users/models.py).

"""
Supabase Auth provides:
- sign_up() / sign_in_with_password() - email + password identities
- sign_in_with_oauth() + exchange_code_for_session() - google, azure, discord, facebook
- reset_password_for_email() - reset link redirecting to {site_url}/auth/reset-password
- get_session() / on_auth_state_change() - session lifecycle

Avatars are stored in the avatars bucket at {user_id}/avatar.{ext}, overwritten
on every upload.
"""
