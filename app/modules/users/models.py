# Supabase tables: users, auth.users
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py
# Authentication is handled by Supabase Auth (auth.users table)

"""
Expected Supabase table structure:

users:
- id: uuid (primary key, references auth.users.id)
- username: text (unique, not null) - copied from raw_user_meta_data on signup
- display_name: text (nullable) - copied from raw_user_meta_data when present
- email: text (nullable) - synced from auth.users
- avatar_url: text (nullable)
- created_at: timestamp (default: now())

Rows are inserted by an AFTER INSERT trigger on auth.users, so a row appears
some time after sign-up rather than in the same request. Nothing here deletes
rows.

Storage bucket "avatars" (public): one object per account named
{user_id}{.ext}; uploads overwrite.
"""
