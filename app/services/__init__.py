"""Business services: notice lifecycle, moderation, roles, audit, realtime."""
