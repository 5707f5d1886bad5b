# Supabase table: users (public schema), one row per auth.users identity
# This file documents the expected database schema
# Actual operations go through the StorageProvider in service.py

"""
Expected Supabase table structure:

users:
- id: uuid (primary key, references auth.users.id)
- username: text (unique, not null)
- email: text (not null)
- avatar_url: text (nullable)
- bio: text (nullable)
- website_url: text (nullable)
- website_public: boolean (default: false)
- phone: text (nullable)
- phone_public: boolean (default: false)
- messaging_platform: text (nullable)
- messaging_username: text (nullable)
- messaging_public: boolean (default: false)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

Rows are provisioned by the app the first time an authenticated identity has
no matching row. The app never deletes rows from this table.
"""
