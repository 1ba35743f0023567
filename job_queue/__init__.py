"""
Job Queue — drains follow/unfollow events from the profile_events queue.

pgmq (through Supabase) in production, in-memory deques for development.
"""
