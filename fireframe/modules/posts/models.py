# Supabase table: posts (public schema), bucket: post-images
# This file documents the expected database schema
# Actual operations go through the StorageProvider in service.py

"""
Expected Supabase table structure:

posts:
- id: uuid (primary key, default: gen_random_uuid())
- author_username: text (not null) - copied from users.username at creation
- author_avatar_url: text (nullable) - copied from users.avatar_url at creation
- image_url: text (not null) - public URL in the post-images bucket, or external
- caption: text
- likes: integer (default: 0)
- comments: integer (default: 0)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

The author columns are a snapshot: changing a user's avatar later does not
change posts already created. Realtime must be enabled for this table
(supabase_realtime publication) for the post feed to stay live.
Per-author feeds filter on author_username; set REPLICA IDENTITY FULL on
posts so DELETE events carry that column and reach them.

Known limitation: posts record their author only by username, and edit or
delete rights are checked against that snapshot. After a user renames
themselves they can no longer edit their older posts, and whoever later
takes the old username can.

post-images objects: posts/{username}/{epoch_ms}.{ext} for inline images,
{path}/{epoch_ms}_{filename} for uploaded files.
"""
