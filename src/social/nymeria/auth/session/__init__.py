"""
Server-side session lifecycle: the persistence interface, the synchronizer that is the
single write path for session records, and the activity/expiry tracker.
"""
