"""
Application-wide infrastructure (database engine and sessions).
"""
