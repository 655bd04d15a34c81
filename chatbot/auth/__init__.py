"""
Authentication for the chat API.

Design goals:
- Password + emailed one-time code for both registration and every login.
- Stateless bearer credentials (signed, time-bound, no revocation list).
- Failure reasons that could leak account state are merged into one public error.
"""
