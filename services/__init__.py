"""Clients for external services:
- Shared HTTP client with retry
- Open Library search
- Google OAuth 2.0 sign-in
"""
