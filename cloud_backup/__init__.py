"""Client-side core of the cloud backup app.

Exchanges identity tokens for temporary S3 credentials, models backup
schedules and sync previews, and ships a small CLI on top.
"""

__version__ = "0.3.0"
