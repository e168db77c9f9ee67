"""
Session subsystem.

Components:
- session_models.py: Session, VerificationCode and their type enums
- session_store.py: token -> session directory with expiry checked on read
- verification.py: single-use expiring codes (OTP, temp tokens)
- auth.py: OTP login flow
- sweeper.py: background cleanup of expired sessions and codes
"""
