"""
Archivist of Moirai fragment package.

Provides:
- A retrying async client for the fragment generation service
- The fragment service itself (FastAPI proxy in front of Gemini)
- In-memory round and scoring rules for the guessing game
"""
